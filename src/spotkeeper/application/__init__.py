"""Application layer: services, use cases and workers."""
