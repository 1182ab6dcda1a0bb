"""Credential resolution: static API key or OAuth2 client-credentials token."""
