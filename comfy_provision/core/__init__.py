"""Core domain: models, config, services and use cases."""
