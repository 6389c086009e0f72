"""Core infrastructure: configuration, logging, HTTP client and time handling."""
