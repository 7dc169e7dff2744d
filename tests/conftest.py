"""Pytest bootstrap configuration.

Point settings at an in-memory SQLite database before any application
module is imported.
"""
import os

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest

from application.services.reconciliation_service import ReconciliationConfig, ReconciliationService
from support import InMemoryStore, InMemoryUnitOfWork, StubGateway


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def uow_factory(store):
    return lambda **kwargs: InMemoryUnitOfWork(store, **kwargs)


@pytest.fixture
def gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def service(uow_factory, gateway) -> ReconciliationService:
    return ReconciliationService(
        uow_factory=uow_factory,
        gateway=gateway,
        config=ReconciliationConfig(notify_url="https://shop.example.com/api/v1/payments/webhooks/wechat"),
    )
