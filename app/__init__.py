"""Application layer: configuration, adapters, storage and scheduling."""
