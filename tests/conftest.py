"""
Pytest configuration and fixtures.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Set, Tuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from order_engine.api.main import create_app
from order_engine.config import Settings
from order_engine.core.errors import GatewayError
from order_engine.core.expiry import ExpiryPolicy
from order_engine.core.gateway import GatewayCoordinator, compute_signature
from order_engine.core.models import (
    Address,
    Coupon,
    Customer,
    LineItem,
    NotificationKind,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingMethod,
)
from order_engine.core.notifications import NotificationService
from order_engine.core.orders import OrderService
from order_engine.core.pricing import PricingCalculator
from order_engine.core.store import InMemoryOrderStore
from order_engine.core.validation import OrderIntake

GATEWAY_SECRET = "test_secret"
ADMIN_KEY = "admin-key"
START_TIME = datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)


class MutableClock:
    """Clock that only moves when a test says so."""

    def __init__(self, start: datetime = START_TIME):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class FakeGateway:
    """In-process stand-in for the payment gateway API."""

    def __init__(self) -> None:
        self.created: List[Dict[str, Any]] = []
        self.fetched: List[str] = []
        self.create_error: Optional[Exception] = None
        self.fetch_error: Optional[Exception] = None
        self.return_id = True
        self.payment: Dict[str, Any] = {"method": "upi", "status": "captured"}

    async def create_order(
        self, amount: int, currency: str, receipt: str, notes: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        self.created.append(
            {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes}
        )
        if self.create_error is not None:
            raise self.create_error
        if not self.return_id:
            return {"amount": amount, "currency": currency}
        return {"id": f"order_{len(self.created)}", "amount": amount, "currency": currency}

    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        self.fetched.append(payment_id)
        if self.fetch_error is not None:
            raise self.fetch_error
        return {"id": payment_id, **self.payment}


class RecordingNotifier:
    """Dispatcher that records what it was asked to send."""

    def __init__(self) -> None:
        self.sent: List[Tuple[NotificationKind, str]] = []
        self.failing: Set[NotificationKind] = set()
        self.error: Optional[Exception] = None

    async def send(self, kind: NotificationKind, order: Order) -> bool:
        if self.error is not None:
            raise self.error
        if kind in self.failing:
            return False
        self.sent.append((kind, order.order_id))
        return True

    def count(self, kind: NotificationKind, order_id: Optional[str] = None) -> int:
        return sum(
            1 for sent_kind, sent_id in self.sent
            if sent_kind is kind and (order_id is None or sent_id == order_id)
        )


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        gateway_key_id="rzp_test_key",
        gateway_key_secret=GATEWAY_SECRET,
        gateway_base_url="https://gateway.test",
        gateway_max_attempts=3,
        admin_api_key=ADMIN_KEY,
        database_url="sqlite+aiosqlite:///:memory:",
        app_name="order-engine-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def pricing() -> PricingCalculator:
    return PricingCalculator()


@pytest.fixture
def expiry(clock: MutableClock) -> ExpiryPolicy:
    return ExpiryPolicy(timedelta(minutes=30), clock=clock)


@pytest.fixture
def notifications(store: InMemoryOrderStore, notifier: RecordingNotifier) -> NotificationService:
    return NotificationService(store, notifier)


@pytest.fixture
def order_service(
    store: InMemoryOrderStore,
    pricing: PricingCalculator,
    expiry: ExpiryPolicy,
    notifications: NotificationService,
) -> OrderService:
    return OrderService(store, pricing, expiry, notifications)


@pytest.fixture
def coordinator(
    store: InMemoryOrderStore,
    gateway: FakeGateway,
    pricing: PricingCalculator,
    expiry: ExpiryPolicy,
    notifications: NotificationService,
) -> GatewayCoordinator:
    return GatewayCoordinator(
        store,
        gateway,
        pricing,
        expiry,
        notifications,
        key_id="rzp_test_key",
        key_secret=GATEWAY_SECRET,
    )


@pytest.fixture
def sample_customer() -> Customer:
    return Customer(
        first_name="Asha", last_name="Rao", email="asha@example.com", phone="9876543210"
    )


@pytest.fixture
def sample_address() -> Address:
    return Address(address1="12 MG Road", city="Pune", state="Maharashtra", pincode="411001")


@pytest.fixture
def sample_items() -> Tuple[LineItem, ...]:
    """Subtotal 450: below the free-shipping threshold."""
    return (
        LineItem(product_id="p-1", name="Compost Kit", quantity=2, price=Decimal("100")),
        LineItem(product_id="p-2", name="Seed Pack", quantity=1, price=Decimal("250")),
    )


@pytest.fixture
def make_intake(
    sample_customer: Customer, sample_address: Address, sample_items: Tuple[LineItem, ...]
) -> Callable[..., OrderIntake]:
    def factory(
        payment_method: str = "Gateway",
        shipping_cost: str = "50",
        total: str = "500",
        coupon_code: str = "",
        **overrides: Any,
    ) -> OrderIntake:
        fields: Dict[str, Any] = dict(
            customer=sample_customer,
            shipping_address=sample_address,
            items=sample_items,
            payment_method=payment_method,
            shipping_cost=Decimal(shipping_cost),
            total=Decimal(total),
            coupon_code=coupon_code,
        )
        fields.update(overrides)
        return OrderIntake(**fields)

    return factory


@pytest.fixture
def make_order(
    sample_customer: Customer, sample_address: Address, sample_items: Tuple[LineItem, ...]
) -> Callable[..., Order]:
    """Build an already-priced order directly, bypassing intake."""

    def factory(order_id: str = "ORDER-TEST-1", **overrides: Any) -> Order:
        fields: Dict[str, Any] = dict(
            order_id=order_id,
            customer=sample_customer,
            shipping_address=sample_address,
            items=sample_items,
            shipping_method=ShippingMethod(cost=Decimal("50")),
            coupon=Coupon(),
            payment_method=PaymentMethod.GATEWAY,
            payment_status=PaymentStatus.PENDING,
            order_status=OrderStatus.PENDING,
            total=Decimal("500"),
            created_at=START_TIME,
            updated_at=START_TIME,
        )
        fields.update(overrides)
        return Order(**fields)

    return factory


@pytest.fixture
def sign() -> Callable[[str, str], str]:
    def factory(gateway_order_id: str, payment_id: str) -> str:
        return compute_signature(GATEWAY_SECRET, gateway_order_id, payment_id)

    return factory


@pytest.fixture
def sample_order_payload() -> Dict[str, Any]:
    """Sample order request body."""
    return {
        "customer": {
            "firstName": "Asha",
            "lastName": "Rao",
            "email": "Asha@Example.com",
            "phone": "9876543210",
        },
        "shippingAddress": {
            "address1": "12 MG Road",
            "city": "Pune",
            "state": "Maharashtra",
            "pincode": "411001",
        },
        "items": [
            {"productId": "p-1", "name": "Compost Kit", "quantity": 2, "price": "100"},
            {"productId": "p-2", "name": "Seed Pack", "quantity": 1, "price": "250"},
        ],
        "shippingMethod": {"type": "Standard", "cost": "50"},
        "paymentMethod": "Gateway",
        "total": "500",
    }


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return {"X-API-Key": ADMIN_KEY}


@pytest.fixture
def app(
    test_settings: Settings,
    store: InMemoryOrderStore,
    gateway: FakeGateway,
    notifier: RecordingNotifier,
    clock: MutableClock,
) -> Any:
    return create_app(
        test_settings,
        store=store,
        gateway=gateway,
        notifier=notifier,
        clock=clock,
        configure_logging=False,
    )


@pytest_asyncio.fixture
async def client(app: Any) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def gateway_error() -> GatewayError:
    return GatewayError("Payment gateway temporarily unavailable")
