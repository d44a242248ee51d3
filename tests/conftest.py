"""Shared test fixtures."""

import os
from typing import Any, Callable, Dict, List, Optional

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Set required environment variables before importing app modules
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_shop_sync.db")

from app.database.database import Base
from app.models import Shop, Order
from app.models.order import ORDER_STATUS_COMPLETED
from app.services.credential_provider import CredentialProvider
from app.services.encryption_service import EncryptionService
from app.services.sync_status_service import SyncStatusService


class FakeShopeeClient:
    """Stands in for ShopeeClient; answers calls with a handler.

    The handler gets (path, params) and returns a response body, or an
    exception instance to raise.
    """

    def __init__(self, handler: Callable[[str, Dict[str, Any]], Any]):
        self.handler = handler
        self.calls: List[Dict[str, Any]] = []
        self.entered = 0

    async def __aenter__(self):
        self.entered += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def call(
        self,
        path: str,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        params = dict(params or {})
        self.calls.append({"path": path, "params": params})
        result = self.handler(path, params)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture(autouse=True)
def reset_in_process_claims():
    """Claims are tracked per process; isolate tests from each other."""
    SyncStatusService._in_process.clear()
    yield
    SyncStatusService._in_process.clear()


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite engine so background writers share the database."""
    engine = create_engine(
        f"sqlite:///{tmp_path}/test.db",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    """Create a test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def encryption_service():
    return EncryptionService(Fernet.generate_key().decode())


@pytest.fixture
def credential_provider(encryption_service):
    return CredentialProvider(encryption_service)


@pytest.fixture
def create_shop(db_session, encryption_service):
    """Factory adding a shop with encrypted credentials."""
    def _create_shop(
        shop_id: int = 123,
        access_token: Optional[str] = "test-access-token",
        status: str = "active"
    ) -> Shop:
        shop = Shop(
            shop_id=shop_id,
            shop_name=f"Shop {shop_id}",
            partner_id=2001234,
            partner_key_encrypted=encryption_service.encrypt("test-partner-key"),
            access_token_encrypted=encryption_service.encrypt(access_token) if access_token else None,
            status=status
        )
        db_session.add(shop)
        db_session.commit()
        return shop

    return _create_shop


@pytest.fixture
def create_orders(db_session):
    """Factory adding orders to a shop.

    ``orders`` is a list of (order_sn, create_time) pairs.
    """
    def _create_orders(
        shop_id: int,
        orders,
        status: str = ORDER_STATUS_COMPLETED,
        is_escrow_fetched: Optional[bool] = False,
        total_amount: float = 100.0
    ) -> List[Order]:
        created = [
            Order(
                shop_id=shop_id,
                order_sn=order_sn,
                order_status=status,
                create_time=create_time,
                total_amount=total_amount,
                is_escrow_fetched=is_escrow_fetched
            )
            for order_sn, create_time in orders
        ]
        db_session.add_all(created)
        db_session.commit()
        return created

    return _create_orders


def escrow_response(order_sn: str, escrow_amount: float = 90.0) -> Dict[str, Any]:
    """A successful get_escrow_detail body."""
    return {
        "error": "",
        "message": "",
        "request_id": f"req-{order_sn}",
        "response": {
            "order_sn": order_sn,
            "buyer_user_name": "buyer01",
            "return_order_sn_list": [],
            "order_income": {
                "escrow_amount": escrow_amount,
                "buyer_total_amount": 100.0,
                "original_price": 110.0,
                "seller_discount": 10.0,
                "commission_fee": 5.0,
                "service_fee": 3.0,
                "buyer_payment_method": "COD",
                "items": [{"item_id": 1, "model_quantity_purchased": 1}],
            },
        },
    }


def error_response(error: str = "error_not_found", message: str = "order not eligible") -> Dict[str, Any]:
    return {"error": error, "message": message, "request_id": "req-error"}
