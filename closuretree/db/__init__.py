"""SQLite connection and schema."""
