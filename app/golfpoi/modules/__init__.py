"""
Feature modules live under this package.

Each module owns its models, service functions and blueprint, while reusing
platform primitives (auth, admin gate, audit, storage, DB session).
"""
