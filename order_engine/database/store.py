"""
SQL implementation of ``OrderStore``.

Conditional writes are single ``UPDATE ... WHERE <guard> RETURNING`` statements, so the
database row lock is the only synchronization between concurrent requests.
"""
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..core.errors import ConflictError, DuplicateOrderError, StoreError
from ..core.models import Order, PaymentMethod, PaymentStatus, utcnow
from ..core.store import Guard, OrderFilters, check_changes
from .connection import Database
from .models import OrderRecord

logger = structlog.get_logger(__name__)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _column_value(value: Any) -> Any:
    # str-valued enums are stored as their plain value
    return getattr(value, "value", value)


def _guard_clauses(guard: Guard) -> List[Any]:
    clauses: List[Any] = []
    if guard.payment_method is not None:
        clauses.append(OrderRecord.payment_method == guard.payment_method.value)
    if guard.payment_status is not None:
        clauses.append(OrderRecord.payment_status == guard.payment_status.value)
    if guard.order_status is not None:
        clauses.append(OrderRecord.order_status == guard.order_status.value)
    if guard.gateway_order_id is not None:
        clauses.append(OrderRecord.gateway_order_id == guard.gateway_order_id)
    if guard.created_after is not None:
        clauses.append(OrderRecord.created_at > _utc(guard.created_after))
    if guard.flag_clear is not None:
        clauses.append(getattr(OrderRecord, guard.flag_clear).is_(False))
    return clauses


def _filter_clauses(filters: OrderFilters) -> List[Any]:
    clauses: List[Any] = []
    if filters.payment_method is not None:
        clauses.append(OrderRecord.payment_method == filters.payment_method.value)
    if filters.payment_status is not None:
        clauses.append(OrderRecord.payment_status == filters.payment_status.value)
    if filters.order_status is not None:
        clauses.append(OrderRecord.order_status == filters.order_status.value)
    if filters.created_from is not None:
        clauses.append(OrderRecord.created_at >= _utc(filters.created_from))
    if filters.created_to is not None:
        clauses.append(OrderRecord.created_at < _utc(filters.created_to))
    if filters.order_id_contains:
        escaped = (
            filters.order_id_contains.replace("\\", "\\\\")
            .replace("%", "\\%")
            .replace("_", "\\_")
        )
        clauses.append(OrderRecord.order_id.ilike(f"%{escaped}%", escape="\\"))
    return clauses


class SqlOrderStore:
    """``OrderStore`` backed by SQLAlchemy (PostgreSQL in production)."""

    def __init__(self, database: Database):
        self.database = database

    async def insert(self, order: Order) -> Order:
        record = OrderRecord.from_domain(order)
        record.created_at = _utc(order.created_at)
        record.updated_at = _utc(order.updated_at or order.created_at)
        try:
            async with self.database.session() as session:
                session.add(record)
                await session.commit()
        except IntegrityError as e:
            logger.warning("order_insert_conflict", order_id=order.order_id, error=str(e.orig))
            raise DuplicateOrderError(f"Order {order.order_id} already exists")
        except SQLAlchemyError as e:
            logger.error("order_insert_failed", order_id=order.order_id, error=str(e))
            raise StoreError("Failed to save order")
        return order

    async def get(self, order_id: str) -> Optional[Order]:
        try:
            async with self.database.session() as session:
                record = await session.get(OrderRecord, order_id)
                return record.to_domain() if record is not None else None
        except SQLAlchemyError as e:
            logger.error("order_fetch_failed", order_id=order_id, error=str(e))
            raise StoreError("Failed to load order")

    async def update_where(
        self, order_id: str, guard: Guard, changes: Mapping[str, Any]
    ) -> Optional[Order]:
        check_changes(changes)
        values = {key: _column_value(value) for key, value in changes.items()}
        values["updated_at"] = utcnow()
        stmt = (
            update(OrderRecord)
            .where(OrderRecord.order_id == order_id, *_guard_clauses(guard))
            .values(**values)
            .returning(OrderRecord)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.database.session() as session:
                result = await session.execute(stmt)
                record = result.scalars().first()
                updated = record.to_domain() if record is not None else None
                await session.commit()
        except IntegrityError as e:
            logger.warning("order_update_conflict", order_id=order_id, error=str(e.orig))
            raise ConflictError(f"Update of order {order_id} violates a uniqueness constraint")
        except SQLAlchemyError as e:
            logger.error("order_update_failed", order_id=order_id, error=str(e))
            raise StoreError("Failed to update order")
        return updated

    async def delete_where(self, order_id: str, guard: Guard) -> bool:
        stmt = delete(OrderRecord).where(OrderRecord.order_id == order_id, *_guard_clauses(guard))
        try:
            async with self.database.session() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("order_delete_failed", order_id=order_id, error=str(e))
            raise StoreError("Failed to delete order")
        return result.rowcount == 1

    async def list_orders(self, filters: OrderFilters) -> List[Order]:
        ordering = OrderRecord.created_at.desc() if filters.newest_first else OrderRecord.created_at
        stmt = select(OrderRecord).where(*_filter_clauses(filters)).order_by(ordering)
        if filters.limit is not None:
            stmt = stmt.limit(filters.limit)
        try:
            async with self.database.session() as session:
                result = await session.execute(stmt)
                return [record.to_domain() for record in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error("order_list_failed", error=str(e))
            raise StoreError("Failed to list orders")

    async def purge_expired(self, cutoff: datetime) -> int:
        stmt = delete(OrderRecord).where(
            OrderRecord.payment_method == PaymentMethod.GATEWAY.value,
            OrderRecord.payment_status == PaymentStatus.PENDING.value,
            OrderRecord.created_at <= _utc(cutoff),
        )
        try:
            async with self.database.session() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("expired_order_purge_failed", error=str(e))
            raise StoreError("Failed to purge expired orders")
        if result.rowcount:
            logger.info("expired_orders_purged", count=result.rowcount, store="sql")
        return result.rowcount

    async def ping(self) -> bool:
        try:
            return await self.database.ping()
        except SQLAlchemyError as e:
            logger.error("database_ping_failed", error=str(e))
            return False
