from __future__ import annotations

import pytest

from crm_ai.security.vault import CredentialVault
from crm_ai.storage.database import Database

TEST_MASTER_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


@pytest.fixture
def database():
    """Isolated in-memory database with all tables created."""
    db = Database("sqlite:///:memory:")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(TEST_MASTER_KEY)
