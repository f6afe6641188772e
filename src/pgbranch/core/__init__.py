"""Core functionality for pgbranch."""
