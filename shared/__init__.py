"""
Shared utilities for the ESI SSO client.

This package aggregates common building blocks consumed by esi_auth:

- config: Client configuration via pydantic-settings
- logging: Structured logging with credential masking and trace correlation
- errors: Canonical error types and responses
- test_helpers: Signing keys and token factories for tests and mocks

Do not import from esi_auth into shared/.
"""
