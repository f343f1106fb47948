"""Entity-style tree service."""
