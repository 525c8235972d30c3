import os
import sys
import tempfile
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Settings are read at import time, so the environment is fixed before the
# package is imported by any test module.
_DB_DIR = Path(tempfile.mkdtemp(prefix="casino-wallet-tests-"))
os.environ.update(
    {
        "DB_URL": f"sqlite:///{_DB_DIR / 'test.db'}",
        "BEARER_TOKEN": "testtoken",
        "ADMIN_TOKEN": "admintoken",
        "HMAC_SECRET": "testsecret",
        "PAYOUT_BASE_URL": "http://payment-processor:8001",
        "TIMESTAMP_SKEW_SECONDS": "5",
        "SUPPORTED_CURRENCIES": '["USD", "INR", "GBP"]',
    }
)


@pytest.fixture(scope="function")
def app_module():
    """
    Fresh schema per test; the fee config cache is dropped with it.
    """
    import casino_wallet.database as database
    import casino_wallet.main as main
    from casino_wallet.models import models

    models.Base.metadata.drop_all(bind=database.engine)
    models.Base.metadata.create_all(bind=database.engine)
    main.app.state.fee_config_loader.invalidate()
    yield main, database, models
    main.app.dependency_overrides.clear()


@pytest.fixture
def db(app_module):
    _, database, _ = app_module
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(app_module):
    main, _, _ = app_module
    with TestClient(main.app) as client:
        yield client


@pytest.fixture
def make_player(app_module):
    """Insert a player directly and return its id."""
    _, database, models = app_module

    def _make(balance="0", currency="USD", email=None):
        with database.SessionLocal() as session:
            player = models.Player(
                email=email or f"player-{os.urandom(4).hex()}@example.com",
                currency=currency,
                balance=Decimal(balance),
            )
            session.add(player)
            session.commit()
            return player.id

    return _make


@pytest.fixture
def fee_config(app_module):
    """Write the fee config row and return a setter for later changes."""
    main, database, models = app_module

    def _set(fee_percentage="2", is_active=True, min_fee_amount="0", max_fee_amount="1000"):
        with database.SessionLocal() as session:
            return main.app.state.fee_config_loader.update(
                session,
                {
                    "fee_percentage": Decimal(fee_percentage),
                    "is_active": is_active,
                    "min_fee_amount": Decimal(min_fee_amount),
                    "max_fee_amount": Decimal(max_fee_amount),
                },
            )

    _set()
    return _set
