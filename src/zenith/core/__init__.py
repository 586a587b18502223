"""Cross-cutting infrastructure: structured logging and key/value persistence."""
