"""Transport channels."""
