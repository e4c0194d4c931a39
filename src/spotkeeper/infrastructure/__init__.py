"""Infrastructure layer: HTTP client, storage, observability."""
