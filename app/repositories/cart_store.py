"""
Cart persistence keyed by user name.

Every method touches a single key inside one transaction, so consistency
rests on the database's per-row atomicity; no client-side locking.
"""

from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import MetaData, delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from app.models.cart import cart_table
from shared.errors import StoreUnavailableError
from shared.events import Cart, CartItem


class CartStore(Protocol):
    async def get(self, user_name: str) -> Cart | None:
        ...

    async def scan(self) -> list[Cart]:
        ...

    async def put(self, cart: Cart) -> None:
        ...

    async def mark_checkout(self, user_name: str, checkout_id: str) -> bool:
        ...

    async def delete(self, user_name: str, checkout_id: str | None = None) -> bool:
        ...


def _deletable(cart: Cart, checkout_id: str | None) -> bool:
    # A correlated delete only removes the cart its checkout was taken from.
    return checkout_id is None or cart.pending_checkout_id == checkout_id


class InMemoryCartStore:
    def __init__(self):
        self.unavailable = False
        self._carts: dict[str, Cart] = {}

    def _check(self) -> None:
        if self.unavailable:
            raise StoreUnavailableError("Cart store is unavailable")

    async def get(self, user_name: str) -> Cart | None:
        self._check()
        cart = self._carts.get(user_name)
        return cart.model_copy(deep=True) if cart else None

    async def scan(self) -> list[Cart]:
        self._check()
        return [cart.model_copy(deep=True) for cart in self._carts.values()]

    async def put(self, cart: Cart) -> None:
        self._check()
        self._carts[cart.user_name] = cart.model_copy(deep=True)

    async def mark_checkout(self, user_name: str, checkout_id: str) -> bool:
        self._check()
        cart = self._carts.get(user_name)
        if cart is None:
            return False
        cart.pending_checkout_id = checkout_id
        return True

    async def delete(self, user_name: str, checkout_id: str | None = None) -> bool:
        self._check()
        cart = self._carts.get(user_name)
        if cart is None or not _deletable(cart, checkout_id):
            return False
        del self._carts[user_name]
        return True


class SqlCartStore:
    def __init__(self, engine: AsyncEngine, table_name: str, metadata: MetaData | None = None):
        self._engine = engine
        self.metadata = metadata if metadata is not None else MetaData()
        self.table = cart_table(self.metadata, table_name)

    def _to_cart(self, row) -> Cart:
        return Cart(
            user_name=row.user_name,
            items=[CartItem.model_validate(item) for item in row.items],
            pending_checkout_id=row.pending_checkout_id,
        )

    async def get(self, user_name: str) -> Cart | None:
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(select(self.table).where(self.table.c.user_name == user_name))
                row = result.first()
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Reading cart failed: {exc}") from exc
        return self._to_cart(row) if row else None

    async def scan(self) -> list[Cart]:
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(select(self.table).order_by(self.table.c.user_name))
                rows = result.all()
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Scanning carts failed: {exc}") from exc
        return [self._to_cart(row) for row in rows]

    async def put(self, cart: Cart) -> None:
        values = {
            "items": [item.to_wire() for item in cart.items],
            "pending_checkout_id": cart.pending_checkout_id,
            "updated_at": datetime.now(timezone.utc),
        }
        # Single-statement upsert: concurrent first writes for one user cannot collide.
        dialect = postgresql if self._engine.dialect.name == "postgresql" else sqlite
        stmt = dialect.insert(self.table).values(user_name=cart.user_name, **values)
        stmt = stmt.on_conflict_do_update(index_elements=[self.table.c.user_name], set_=values)
        try:
            async with self._engine.begin() as conn:
                await conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Writing cart failed: {exc}") from exc

    async def mark_checkout(self, user_name: str, checkout_id: str) -> bool:
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(
                    update(self.table)
                    .where(self.table.c.user_name == user_name)
                    .values(pending_checkout_id=checkout_id, updated_at=datetime.now(timezone.utc))
                )
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Marking cart checkout failed: {exc}") from exc
        return result.rowcount > 0

    async def delete(self, user_name: str, checkout_id: str | None = None) -> bool:
        stmt = delete(self.table).where(self.table.c.user_name == user_name)
        if checkout_id is not None:
            stmt = stmt.where(self.table.c.pending_checkout_id == checkout_id)
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Deleting cart failed: {exc}") from exc
        return result.rowcount > 0
