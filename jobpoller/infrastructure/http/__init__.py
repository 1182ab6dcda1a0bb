"""HTTP adapter for the remote API (httpx)."""
