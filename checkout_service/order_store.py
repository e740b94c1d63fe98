"""
Append-only order persistence keyed by (user_name, order_date).

Orders are created and read, never updated or deleted. A non-null checkout_id
is unique: creating a second order for the same checkout raises
DuplicateCheckoutError instead of writing a row.
"""

from decimal import Decimal
from typing import Protocol

from sqlalchemy import MetaData, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from checkout_service.models import order_table
from shared.errors import DuplicateCheckoutError, StoreUnavailableError
from shared.events import CartItem, Order, OrderStatus


class OrderStore(Protocol):
    async def create(self, order: Order) -> None:
        ...

    async def get(self, user_name: str, order_date: str) -> Order | None:
        ...

    async def get_by_checkout_id(self, checkout_id: str) -> Order | None:
        ...

    async def scan(self, user_name: str | None = None) -> list[Order]:
        ...


class InMemoryOrderStore:
    def __init__(self):
        self.unavailable = False
        self._orders: dict[tuple[str, str], Order] = {}

    def _check(self) -> None:
        if self.unavailable:
            raise StoreUnavailableError("Order store is unavailable")

    async def create(self, order: Order) -> None:
        self._check()
        if order.checkout_id is not None and any(
            existing.checkout_id == order.checkout_id for existing in self._orders.values()
        ):
            raise DuplicateCheckoutError(order.checkout_id)
        key = (order.user_name, order.order_date)
        if key in self._orders:
            raise StoreUnavailableError(f"Order {key} already exists")
        self._orders[key] = order.model_copy(deep=True)

    async def get(self, user_name: str, order_date: str) -> Order | None:
        self._check()
        order = self._orders.get((user_name, order_date))
        return order.model_copy(deep=True) if order else None

    async def get_by_checkout_id(self, checkout_id: str) -> Order | None:
        self._check()
        for order in self._orders.values():
            if order.checkout_id == checkout_id:
                return order.model_copy(deep=True)
        return None

    async def scan(self, user_name: str | None = None) -> list[Order]:
        self._check()
        return [
            order.model_copy(deep=True)
            for key, order in sorted(self._orders.items())
            if user_name is None or key[0] == user_name
        ]


class SqlOrderStore:
    def __init__(self, engine: AsyncEngine, table_name: str, metadata: MetaData | None = None):
        self._engine = engine
        self.metadata = metadata if metadata is not None else MetaData()
        self.table = order_table(self.metadata, table_name)

    def _to_order(self, row) -> Order:
        return Order(
            user_name=row.user_name,
            order_date=row.order_date,
            checkout_id=row.checkout_id,
            first_name=row.first_name,
            last_name=row.last_name,
            email=row.email,
            total_price=Decimal(row.total_price),
            items=[CartItem.model_validate(item) for item in row.items],
            status=OrderStatus(row.status),
        )

    async def create(self, order: Order) -> None:
        try:
            async with self._engine.begin() as conn:
                await conn.execute(
                    insert(self.table).values(
                        user_name=order.user_name,
                        order_date=order.order_date,
                        checkout_id=order.checkout_id,
                        first_name=order.first_name,
                        last_name=order.last_name,
                        email=order.email,
                        total_price=str(order.total_price),
                        items=[item.to_wire() for item in order.items],
                        status=order.status.value,
                    )
                )
        except IntegrityError as exc:
            if order.checkout_id is not None and await self.get_by_checkout_id(order.checkout_id):
                raise DuplicateCheckoutError(order.checkout_id) from exc
            raise StoreUnavailableError(f"Writing order failed: {exc}") from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Writing order failed: {exc}") from exc

    async def _fetch(self, stmt) -> list[Order]:
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(stmt)
                rows = result.all()
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Reading orders failed: {exc}") from exc
        return [self._to_order(row) for row in rows]

    async def get(self, user_name: str, order_date: str) -> Order | None:
        orders = await self._fetch(
            select(self.table).where(
                self.table.c.user_name == user_name,
                self.table.c.order_date == order_date,
            )
        )
        return orders[0] if orders else None

    async def get_by_checkout_id(self, checkout_id: str) -> Order | None:
        orders = await self._fetch(select(self.table).where(self.table.c.checkout_id == checkout_id))
        return orders[0] if orders else None

    async def scan(self, user_name: str | None = None) -> list[Order]:
        stmt = select(self.table).order_by(self.table.c.user_name, self.table.c.order_date)
        if user_name is not None:
            stmt = stmt.where(self.table.c.user_name == user_name)
        return await self._fetch(stmt)
