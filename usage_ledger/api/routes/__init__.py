"""Route modules for the HTTP API."""
