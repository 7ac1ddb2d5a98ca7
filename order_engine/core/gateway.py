"""
Gateway coordination: payment initiation and signed-callback verification.

Flow for an online payment:
1. ``initiate`` re-checks the stored order, creates a remote gateway order and stores
   its id with one conditional write
2. The customer pays on the gateway's checkout
3. ``verify`` checks the callback signature, re-checks the order and commits the
   ``(Pending, Pending) -> (Success, Confirmed)`` transition with one conditional write
4. Only the request that won that write looks up the realized instrument and
   dispatches notifications

Remote calls happen strictly before or after the conditional write, never between a
read and the write that depends on it.
"""
import hashlib
import hmac
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import structlog

from ..monitoring.metrics import metrics
from .errors import (
    ConflictError,
    ExpiryError,
    GatewayError,
    NotFoundError,
    OrderEngineError,
    SignatureError,
    ValidationError,
    ValidationIssue,
)
from .expiry import ExpiryPolicy
from .models import Order, PaymentInstrument, PaymentMethod, PaymentStatus
from .notifications import NotificationService
from .pricing import PricingCalculator, amount_in_minor_units
from .state_machine import OrderEvent, OrderStateMachine
from .store import Guard, OrderStore
from .validation import (
    InitiatePaymentInput,
    VerifyPaymentInput,
    ensure_valid,
    validate_initiate,
    validate_verify,
)

logger = structlog.get_logger(__name__)


class PaymentGateway(Protocol):
    """Remote payment gateway operations the engine depends on."""

    async def create_order(
        self, amount: int, currency: str, receipt: str, notes: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        ...

    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class PaymentInitiation:
    """What the storefront needs to open the gateway checkout."""

    gateway_order_id: str
    public_key: str
    amount: int
    currency: str
    order: Order

    def to_response(self) -> Dict[str, Any]:
        return {
            "gatewayOrderId": self.gateway_order_id,
            "publicKey": self.public_key,
            "orderData": {
                "orderId": self.order.order_id,
                "amount": self.amount,
                "currency": self.currency,
                "customer": {
                    "name": self.order.customer.full_name,
                    "email": self.order.customer.email,
                    "contact": self.order.customer.phone,
                },
            },
        }


def compute_signature(secret: str, gateway_order_id: str, payment_id: str) -> str:
    """HMAC-SHA256 hex digest of ``"{gateway_order_id}|{payment_id}"``."""
    message = f"{gateway_order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(secret: str, gateway_order_id: str, payment_id: str, signature: str) -> bool:
    expected = compute_signature(secret, gateway_order_id, payment_id)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


_INSTRUMENT_LABELS: Dict[str, PaymentInstrument] = {
    "upi": PaymentInstrument.UPI,
    "card": PaymentInstrument.CARD,
    "netbanking": PaymentInstrument.NET_BANKING,
    "wallet": PaymentInstrument.WALLET,
    "emi": PaymentInstrument.EMI,
    "bank_transfer": PaymentInstrument.BANK_TRANSFER,
    "paylater": PaymentInstrument.PAY_LATER,
}


def normalize_instrument(payment: Dict[str, Any]) -> Optional[str]:
    """
    Human-readable label for the instrument a gateway payment used.

    Cards report their network (``Visa``, ``MasterCard``) and wallets their provider
    when the gateway supplies one. Unknown methods pass through unchanged.
    """
    method = payment.get("method")
    if not method or not isinstance(method, str):
        return None
    instrument = _INSTRUMENT_LABELS.get(method.lower())
    if instrument is None:
        return method
    if instrument is PaymentInstrument.CARD:
        card = payment.get("card")
        network = card.get("network") if isinstance(card, dict) else None
        return network or instrument.value
    if instrument is PaymentInstrument.WALLET:
        return payment.get("wallet") or instrument.value
    return instrument.value


class GatewayCoordinator:
    """Creates gateway orders and reconciles verified payments into local state."""

    def __init__(
        self,
        store: OrderStore,
        gateway: PaymentGateway,
        pricing: PricingCalculator,
        expiry: ExpiryPolicy,
        notifications: NotificationService,
        key_id: str,
        key_secret: str,
        currency: str = "INR",
    ):
        self.store = store
        self.gateway = gateway
        self.pricing = pricing
        self.expiry = expiry
        self.notifications = notifications
        self.key_id = key_id
        self._key_secret = key_secret
        self.currency = currency

    async def _load_gateway_order(self, order_id: str) -> Order:
        order = await self.store.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if order.payment_method is not PaymentMethod.GATEWAY:
            raise ValidationError(
                "Order is not an online payment order",
                [ValidationIssue("orderId", "Order does not use online payment")],
            )
        return order

    @staticmethod
    def _ensure_pending(order: Order) -> None:
        if order.payment_status is PaymentStatus.SUCCESS:
            raise ConflictError(f"Payment already verified for order {order.order_id}")
        if order.payment_status is not PaymentStatus.PENDING:
            raise ConflictError(f"Order {order.order_id} is no longer awaiting payment")

    async def _explain_lost_write(self, order_id: str) -> OrderEngineError:
        """Re-read after a conditional write matched nothing and describe why."""
        current = await self.store.get(order_id)
        if current is None:
            return NotFoundError(f"Order {order_id} not found")
        if current.payment_status is not PaymentStatus.PENDING:
            return ConflictError(f"Order {order_id} was already processed")
        if self.expiry.is_expired(current):
            return ExpiryError(f"Order {order_id} has expired. Please create a new order.")
        return ConflictError(f"Order {order_id} changed concurrently, please retry")

    async def initiate(self, data: InitiatePaymentInput) -> PaymentInitiation:
        """
        Create a remote gateway order for a pending local order.

        Raises:
            ValidationError: Bad input, non-gateway order or pricing drift
            NotFoundError: Unknown order
            ConflictError: Order no longer pending
            ExpiryError: Payment window exceeded
            GatewayError: Remote call failed or returned no order id
        """
        ensure_valid(validate_initiate(data), "Invalid payment initiation request")

        order = await self._load_gateway_order(data.order_id)
        self._ensure_pending(order)
        self.expiry.ensure_actionable(order)
        self.pricing.revalidate(order)

        amount = amount_in_minor_units(order.total)
        try:
            gateway_order = await self.gateway.create_order(
                amount=amount,
                currency=self.currency,
                receipt=order.order_id,
                notes={
                    "orderId": order.order_id,
                    "customerEmail": order.customer.email,
                    "customerName": order.customer.full_name,
                },
            )
        except GatewayError:
            metrics.record_initiation("gateway_error")
            raise

        gateway_order_id = gateway_order.get("id")
        if not gateway_order_id:
            metrics.record_initiation("gateway_error")
            logger.error("gateway_order_missing_id", order_id=order.order_id)
            raise GatewayError("Payment gateway did not return an order id")

        updated = await self.store.update_where(
            order.order_id,
            Guard(
                payment_method=PaymentMethod.GATEWAY,
                payment_status=PaymentStatus.PENDING,
                created_after=self.expiry.cutoff(),
            ),
            {"gateway_order_id": gateway_order_id},
        )
        if updated is None:
            metrics.record_initiation("lost_write")
            raise await self._explain_lost_write(order.order_id)

        metrics.record_initiation("success")
        logger.info(
            "payment_initiated",
            order_id=order.order_id,
            gateway_order_id=gateway_order_id,
            amount=amount,
            currency=self.currency,
        )
        return PaymentInitiation(
            gateway_order_id=gateway_order_id,
            public_key=self.key_id,
            amount=amount,
            currency=self.currency,
            order=updated,
        )

    async def verify(self, data: VerifyPaymentInput) -> Order:
        """
        Verify a signed payment callback and confirm the order.

        Raises:
            ValidationError: Bad input, non-gateway order, id mismatch or pricing drift
            SignatureError: Signature does not match
            NotFoundError: Unknown order
            ConflictError: Payment already verified (replay) or order cancelled
            ExpiryError: Payment window exceeded
        """
        ensure_valid(validate_verify(data), "Invalid payment verification request")

        if not verify_signature(
            self._key_secret, data.gateway_order_id, data.payment_id, data.signature
        ):
            metrics.record_verification("invalid_signature")
            logger.warning(
                "security_payment_signature_invalid",
                order_id=data.order_id,
                gateway_order_id=data.gateway_order_id,
                payment_id=data.payment_id,
            )
            raise SignatureError("Invalid payment signature")

        try:
            order = await self._load_gateway_order(data.order_id)
            self._ensure_pending(order)
            if order.gateway_order_id != data.gateway_order_id:
                logger.warning(
                    "gateway_order_id_mismatch",
                    order_id=order.order_id,
                    stored=order.gateway_order_id,
                    received=data.gateway_order_id,
                )
                raise ValidationError(
                    "Gateway order id mismatch",
                    [ValidationIssue("gatewayOrderId", "Does not match the order")],
                )
            self.expiry.ensure_actionable(order)
            self.pricing.revalidate(order)
        except ConflictError:
            metrics.record_verification("conflict")
            raise
        except ExpiryError:
            metrics.record_verification("expired")
            raise
        except OrderEngineError:
            metrics.record_verification("rejected")
            raise

        transition = OrderStateMachine.transition_for(OrderEvent.PAYMENT_VERIFIED)
        confirmed = await self.store.update_where(
            order.order_id,
            transition.guard(
                payment_method=PaymentMethod.GATEWAY,
                gateway_order_id=data.gateway_order_id,
                created_after=self.expiry.cutoff(),
            ),
            {**transition.changes(), "gateway_payment_id": data.payment_id},
        )
        if confirmed is None:
            metrics.record_verification("lost_write")
            logger.info("payment_verification_lost_race", order_id=order.order_id)
            raise await self._explain_lost_write(order.order_id)

        metrics.record_verification("success")
        metrics.record_transition(OrderEvent.PAYMENT_VERIFIED.value)
        logger.info(
            "payment_verified",
            order_id=confirmed.order_id,
            gateway_order_id=data.gateway_order_id,
            payment_id=data.payment_id,
            email=confirmed.customer.email,
            total=str(confirmed.total),
        )

        confirmed = await self._record_instrument(confirmed, data.payment_id)
        await self.notifications.notify_confirmed(confirmed)
        return confirmed

    async def _record_instrument(self, order: Order, payment_id: str) -> Order:
        """Best effort: failures are logged and the confirmed order is returned as is."""
        try:
            payment = await self.gateway.fetch_payment(payment_id)
            label = normalize_instrument(payment)
            if label is None:
                return order
            updated = await self.store.update_where(
                order.order_id,
                Guard(payment_status=PaymentStatus.SUCCESS),
                {"gateway_instrument": label},
            )
        except OrderEngineError as e:
            logger.warning(
                "payment_instrument_lookup_failed",
                order_id=order.order_id,
                payment_id=payment_id,
                error=e.message,
            )
            return order
        except Exception as e:
            logger.exception(
                "payment_instrument_lookup_error",
                order_id=order.order_id,
                payment_id=payment_id,
                error=str(e),
            )
            return order
        return updated or order
