"""Internal campaign records and the collaborators the sync layer consumes."""
