"""Field mapping between internal entity shapes and provider-native records.

Defines:
- FieldMapper: bidirectional translator for one entity type on one provider.
  Known fields are renamed; every other provider field is captured into
  ``custom_fields`` on read and flattened back onto the payload on write.
- AirtableCampaignMapper: Airtable campaign tables only carry
  Name/Type/Status/Dates/Budget, so the internal campaign id is encoded in
  the Name as ``"<name> [zenith:<id>]"`` and recovered with a regex on read.
- SALESFORCE_* / AIRTABLE_* maps and per-provider mapper builders.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from src.zenith.crm.schemas import (
    CRMCampaign,
    CRMCompany,
    CRMContact,
    CRMDeal,
    EntityType,
    FieldMapping,
    MappingDirection,
)

EntityT = TypeVar("EntityT", bound=BaseModel)

# Custom-field key under which the internal campaign id travels.
INTERNAL_CAMPAIGN_ID_FIELD = "zenith_campaign_id"


# ── Salesforce Field Maps ──────────────────────────────────────────────────
# Salesforce Contact has no free-text company column, so ``company`` is not
# mapped; link contacts to accounts through custom fields instead.

SALESFORCE_CONTACT_FIELDS: dict[str, str] = {
    "email": "Email",
    "first_name": "FirstName",
    "last_name": "LastName",
    "phone": "Phone",
}

SALESFORCE_DEAL_FIELDS: dict[str, str] = {
    "name": "Name",
    "amount": "Amount",
    "stage": "StageName",
    "close_date": "CloseDate",
    "contact_id": "ContactId",
    "company_id": "AccountId",
}

SALESFORCE_COMPANY_FIELDS: dict[str, str] = {
    "name": "Name",
    "domain": "Website",
    "industry": "Industry",
    "size": "NumberOfEmployees",
}

SALESFORCE_CAMPAIGN_FIELDS: dict[str, str] = {
    "name": "Name",
    "type": "Type",
    "status": "Status",
    "start_date": "StartDate",
    "end_date": "EndDate",
    "budget": "BudgetedCost",
}

SALESFORCE_SOBJECTS: dict[EntityType, str] = {
    EntityType.CONTACT: "Contact",
    EntityType.DEAL: "Opportunity",
    EntityType.COMPANY: "Account",
    EntityType.CAMPAIGN: "Campaign",
}


# ── Airtable Field Maps ────────────────────────────────────────────────────

AIRTABLE_CONTACT_FIELDS: dict[str, str] = {
    "email": "Email",
    "first_name": "First Name",
    "last_name": "Last Name",
    "company": "Company",
    "phone": "Phone",
}

AIRTABLE_DEAL_FIELDS: dict[str, str] = {
    "name": "Name",
    "amount": "Amount",
    "stage": "Stage",
    "close_date": "Close Date",
    "contact_id": "Contact ID",
    "company_id": "Company ID",
}

AIRTABLE_COMPANY_FIELDS: dict[str, str] = {
    "name": "Name",
    "domain": "Domain",
    "industry": "Industry",
    "size": "Size",
}

AIRTABLE_CAMPAIGN_FIELDS: dict[str, str] = {
    "name": "Name",
    "type": "Type",
    "status": "Status",
    "start_date": "Start Date",
    "end_date": "End Date",
    "budget": "Budget",
}

AIRTABLE_TABLES: dict[EntityType, str] = {
    EntityType.CONTACT: "Contacts",
    EntityType.DEAL: "Deals",
    EntityType.COMPANY: "Companies",
    EntityType.CAMPAIGN: "Campaigns",
}


# ── Mapper ─────────────────────────────────────────────────────────────────


class FieldMapper(Generic[EntityT]):
    """Translate one entity type to and from a provider's field names.

    Args:
        model: Pydantic entity class with ``id`` and ``custom_fields``.
        field_map: internal field name -> provider field name.
        id_field: Provider key holding the record id inside the record body
            (Salesforce ``Id``). None when the id lives outside the fields
            (Airtable).
        ignored_fields: Provider metadata keys never captured as custom
            fields (Salesforce ``attributes``).
    """

    def __init__(
        self,
        model: type[EntityT],
        field_map: Mapping[str, str],
        *,
        id_field: str | None = None,
        ignored_fields: Iterable[str] = (),
    ) -> None:
        self._model = model
        self._id_field = id_field
        self._ignored = frozenset(ignored_fields)
        self._to_map: dict[str, str] = dict(field_map)
        self._from_map: dict[str, str] = {ext: internal for internal, ext in field_map.items()}
        # custom_fields key -> provider field, for user-declared renames
        self._custom_to: dict[str, str] = {}
        self._custom_from: dict[str, str] = {}

    @property
    def model(self) -> type[EntityT]:
        return self._model

    @property
    def known_external_fields(self) -> frozenset[str]:
        """Provider field names this mapper maps by name."""
        return frozenset(self._from_map) | frozenset(self._to_map.values())

    def with_overrides(self, mappings: Iterable[FieldMapping]) -> FieldMapper[EntityT]:
        """Return a copy with user-declared field mappings applied.

        A mapping whose ``internal_field`` is a model attribute renames that
        attribute's provider field. Any other ``internal_field`` is treated as
        a ``custom_fields`` key to be renamed on the wire.
        """
        clone = self._copy()
        model_fields = set(self._model.model_fields) - {"id", "custom_fields"}

        for mapping in mappings:
            sends = mapping.direction in (MappingDirection.BIDIRECTIONAL, MappingDirection.TO_EXTERNAL)
            reads = mapping.direction in (MappingDirection.BIDIRECTIONAL, MappingDirection.FROM_EXTERNAL)

            if mapping.internal_field in model_fields:
                previous = clone._to_map.pop(mapping.internal_field, None)
                if previous is not None:
                    clone._from_map.pop(previous, None)
                if sends:
                    clone._to_map[mapping.internal_field] = mapping.external_field
                if reads:
                    clone._from_map[mapping.external_field] = mapping.internal_field
            else:
                if sends:
                    clone._custom_to[mapping.internal_field] = mapping.external_field
                if reads:
                    clone._custom_from[mapping.external_field] = mapping.internal_field

        return clone

    def to_external(self, entity: EntityT) -> dict[str, Any]:
        """Build the provider payload for ``entity``.

        Unset (None) known fields are omitted so partial updates do not
        blank provider values. Custom fields never shadow mapped fields.
        """
        data = entity.model_dump(mode="json", exclude={"id", "custom_fields"})
        payload: dict[str, Any] = {}

        for internal_name, external_name in self._to_map.items():
            value = data.get(internal_name)
            if value is not None:
                payload[external_name] = value

        for key, value in getattr(entity, "custom_fields", {}).items():
            external_name = self._custom_to.get(key, key)
            if external_name not in payload:
                payload[external_name] = value

        return payload

    def from_external(self, record: Mapping[str, Any], record_id: str | None = None) -> EntityT:
        """Build an entity from a provider record.

        Args:
            record: Provider field dict (Salesforce record body, Airtable
                ``fields`` object).
            record_id: Explicit id; otherwise read from ``id_field``.
        """
        values: dict[str, Any] = {}
        custom: dict[str, Any] = {}

        for key, value in record.items():
            if key in self._from_map:
                values[self._from_map[key]] = value
            elif key == self._id_field or key in self._ignored:
                continue
            else:
                custom[self._custom_from.get(key, key)] = value

        if record_id is None and self._id_field is not None:
            record_id = record.get(self._id_field)

        return self._model.model_validate({**values, "id": record_id, "custom_fields": custom})

    def _copy(self) -> FieldMapper[EntityT]:
        clone = object.__new__(type(self))
        clone.__dict__.update(self.__dict__)
        clone._to_map = dict(self._to_map)
        clone._from_map = dict(self._from_map)
        clone._custom_to = dict(self._custom_to)
        clone._custom_from = dict(self._custom_from)
        return clone


class AirtableCampaignMapper(FieldMapper[CRMCampaign]):
    """Campaign mapper that carries the internal id inside the Name.

    Airtable campaign tables have no spare column for a foreign key, so
    ``custom_fields["zenith_campaign_id"]`` is written as a marked suffix
    (``"Spring Launch [zenith:cmp_42]"``) and parsed back out on read.
    Names without the ``zenith:`` marker are never decoded, so user names
    such as ``"Launch [beta]"`` pass through unchanged.
    """

    LINK_MARKER = "zenith:"
    LINK_PATTERN = re.compile(r"^(?:(?P<name>.*) )?\[zenith:(?P<link>[^\[\]]+)\]$", re.DOTALL)

    def __init__(self, field_map: Mapping[str, str] = AIRTABLE_CAMPAIGN_FIELDS) -> None:
        super().__init__(CRMCampaign, field_map)
        self._name_field = field_map["name"]

    @classmethod
    def encode_name(cls, name: str | None, internal_id: str) -> str:
        suffix = f"[{cls.LINK_MARKER}{internal_id}]"
        return suffix if name is None else f"{name} {suffix}"

    @classmethod
    def decode_name(cls, value: str) -> tuple[str | None, str | None]:
        """Split ``"<name> [zenith:<id>]"`` into (name, id). No marker -> (value, None)."""
        match = cls.LINK_PATTERN.match(value)
        if not match:
            return value, None
        return match.group("name"), match.group("link")

    def to_external(self, entity: CRMCampaign) -> dict[str, Any]:
        internal_id = entity.custom_fields.get(INTERNAL_CAMPAIGN_ID_FIELD)
        if internal_id is None:
            return super().to_external(entity)

        remaining = {k: v for k, v in entity.custom_fields.items() if k != INTERNAL_CAMPAIGN_ID_FIELD}
        payload = super().to_external(entity.model_copy(update={"custom_fields": remaining}))
        payload[self._name_field] = self.encode_name(entity.name, str(internal_id))
        return payload

    def from_external(self, record: Mapping[str, Any], record_id: str | None = None) -> CRMCampaign:
        campaign = super().from_external(record, record_id)
        if not isinstance(campaign.name, str):
            return campaign

        name, internal_id = self.decode_name(campaign.name)
        if internal_id is None:
            return campaign

        custom = {**campaign.custom_fields, INTERNAL_CAMPAIGN_ID_FIELD: internal_id}
        return campaign.model_copy(update={"name": name, "custom_fields": custom})


# ── Builders ───────────────────────────────────────────────────────────────


def salesforce_mappers() -> dict[EntityType, FieldMapper[Any]]:
    """Mapper per entity type for Salesforce sObjects."""
    common = {"id_field": "Id", "ignored_fields": ("attributes",)}
    return {
        EntityType.CONTACT: FieldMapper(CRMContact, SALESFORCE_CONTACT_FIELDS, **common),
        EntityType.DEAL: FieldMapper(CRMDeal, SALESFORCE_DEAL_FIELDS, **common),
        EntityType.COMPANY: FieldMapper(CRMCompany, SALESFORCE_COMPANY_FIELDS, **common),
        EntityType.CAMPAIGN: FieldMapper(CRMCampaign, SALESFORCE_CAMPAIGN_FIELDS, **common),
    }


def airtable_mappers() -> dict[EntityType, FieldMapper[Any]]:
    """Mapper per entity type for Airtable tables (ids live outside ``fields``)."""
    return {
        EntityType.CONTACT: FieldMapper(CRMContact, AIRTABLE_CONTACT_FIELDS),
        EntityType.DEAL: FieldMapper(CRMDeal, AIRTABLE_DEAL_FIELDS),
        EntityType.COMPANY: FieldMapper(CRMCompany, AIRTABLE_COMPANY_FIELDS),
        EntityType.CAMPAIGN: AirtableCampaignMapper(),
    }
