"""Configuration: index registry, JSON loader and env-derived runtime settings."""
