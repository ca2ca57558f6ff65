from decimal import Decimal

import pytest

from wallet.collaborators import OfferStore, OrderStore, ServiceCatalog
from wallet.config import Settings
from wallet.db import Database
from wallet.ledger_store import LedgerStore
from wallet.models import OfferCreate
from wallet.service import WalletService
from wallet.settlement import SettlementOrchestrator


CUSTOMER_ID = "cust-0001"


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.engine.dispose()


@pytest.fixture
def ledger(database, settings):
    return LedgerStore(database, settings)


@pytest.fixture
def settlement(database, ledger, settings):
    return SettlementOrchestrator(database, ledger, settings)


@pytest.fixture
def wallet_service(ledger, settlement, settings):
    return WalletService(ledger, settlement, settings)


@pytest.fixture
def add_service(database):
    def _add(name="Deep home cleaning", price="499.00", active=True):
        with database.transaction() as session:
            return ServiceCatalog().add_service(session, name, Decimal(price), active=active)
    return _add


@pytest.fixture
def add_offer(database):
    def _add(**fields):
        fields.setdefault("title", "Test offer")
        with database.transaction() as session:
            return OfferStore().create_offer(session, OfferCreate(**fields))
    return _add


@pytest.fixture
def place_order(database):
    """Insert a pending order with a fixed total, bypassing pricing."""
    def _place(customer_id=CUSTOMER_ID, total="1000.00"):
        total = Decimal(total)
        with database.transaction() as session:
            return OrderStore().create_order(
                session,
                customer_id=customer_id,
                subtotal=total,
                platform_fee=Decimal("0.00"),
                discount_amount=Decimal("0.00"),
                total=total,
                items=[],
            )
    return _place
