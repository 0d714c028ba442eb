"""SQLite persistence for history and suggestion cache."""
