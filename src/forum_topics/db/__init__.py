"""Database helpers: relational session, keyed store and clock utilities."""
