"""HTTP access to the server's administrative web API."""
