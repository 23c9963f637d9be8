"""
Pytest fixtures for vault ledger tests.

Provides an in-memory database, per-test table wipe, a test client and small
factories for vaults, shifts and collection sessions.
"""

import pytest
from vault_ledger import create_app
from vault_ledger.extensions import db
from vault_ledger.services import shift_service, vault_service
from vault_ledger.services.denominations import Breakdown, Total


MANAGER = "mgr-1"
CASHIER = "cashier-7"
LOCATION = "LOC-1"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'VAULT_LOCK_TIMEOUT_SECONDS': 2,
        'VAULT_RETRY_BACKOFF_SECONDS': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def vault(db_session):
    """Empty vault at LOC-1."""
    return vault_service.provision_vault(LOCATION, name="Main Cage")


@pytest.fixture(scope='function')
def manager_headers():
    return {'X-Actor-Id': MANAGER}


def stock(vault_id: int, denominations: dict, actor: str = MANAGER):
    """Bring cash into a vault through an audited bank withdrawal."""
    return vault_service.add_cash_arrival(vault_id, "BANK_WITHDRAWAL", denominations, actor)


def open_shift(opening_balance: int = 450, cashier_id: str = CASHIER, vault_shift_id: str = "VS-1"):
    return shift_service.open_shift(
        cashier_id=cashier_id,
        cashier_name="Dana",
        location_id=LOCATION,
        opening_balance=opening_balance,
        vault_shift_id=vault_shift_id,
    )


def close_with_breakdown(shift_id: int, denominations: dict):
    return shift_service.close_shift(shift_id, Breakdown(denominations), CASHIER)


def close_with_total(shift_id: int, amount: int, touched=frozenset()):
    return shift_service.close_shift(shift_id, Total(amount, frozenset(touched)), CASHIER)
