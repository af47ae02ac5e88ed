from __future__ import annotations

import pytest
from fakes import InMemorySecretStore, InMemoryWebhookStore


@pytest.fixture
def secret_store() -> InMemorySecretStore:
    return InMemorySecretStore()


@pytest.fixture
def webhook_store() -> InMemoryWebhookStore:
    return InMemoryWebhookStore()
