"""Core engine: domain model, validation, registry, pool and orchestration."""
