"""Registry transport, credentials, and the local content cache."""
