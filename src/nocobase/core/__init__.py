"""Core modules: configuration, logging, errors and hooks."""
