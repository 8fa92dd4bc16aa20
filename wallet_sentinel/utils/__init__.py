"""Small shared helpers: wallet validation and rate limiting."""
