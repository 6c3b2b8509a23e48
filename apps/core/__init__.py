"""Core app: shared models, errors, logging and request plumbing."""
