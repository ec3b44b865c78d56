"""Configuration, persistence, auth and middleware."""
