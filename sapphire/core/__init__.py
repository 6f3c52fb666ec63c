"""Core domain: models, engine, providers, persistence."""
