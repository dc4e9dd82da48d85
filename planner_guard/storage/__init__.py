"""SQLite persistence for rate limit and usage records."""
