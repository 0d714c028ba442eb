"""Core services: classification, generation, caching, sessions."""
