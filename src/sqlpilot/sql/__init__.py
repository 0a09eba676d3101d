"""SQL text processing."""

from sqlpilot.sql.sanitizer import sanitize_sql, tokenize_sql

__all__ = ["sanitize_sql", "tokenize_sql"]
