"""
Shared utilities: configuration, logging, errors, schemas, persistence, messaging.
"""
