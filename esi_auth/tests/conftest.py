"""
Shared fixtures for ESI auth unit tests.
"""

import pytest

from shared.test_helpers import MockTokenGenerator, SigningKey, TestCharacter, test_environment


@pytest.fixture(scope="session")
def signing_key():
    """RSA signing key shared across tests; generation is slow."""
    return SigningKey(kid="JWT-Signature-Key-test")


@pytest.fixture
def token_generator(signing_key):
    return MockTokenGenerator(client_id="test-client", signing_key=signing_key)


@pytest.fixture
def character():
    return TestCharacter(character_id=2112625428, name="Test Pilot")


@pytest.fixture
def settings():
    return test_environment.build_settings()
