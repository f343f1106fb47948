"""Node records owned by the entity layer."""
