"""
Order table. The composite primary key (user_name, order_date) keeps the full
order history per user; checkout_id is unique so a redelivered checkout event
cannot produce a second row. total_price is the decimal text, kept exactly as
computed at checkout time.
"""

from sqlalchemy import JSON, Column, MetaData, String, Table, UniqueConstraint

from shared.events import OrderStatus


def order_table(metadata: MetaData, name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("user_name", String(100), primary_key=True),
        Column("order_date", String(32), primary_key=True),
        Column("checkout_id", String(36), nullable=True),
        Column("first_name", String(100), nullable=True),
        Column("last_name", String(100), nullable=True),
        Column("email", String(200), nullable=True),
        Column("total_price", String(64), nullable=False),
        Column("items", JSON, nullable=False),
        Column("status", String(16), nullable=False, default=OrderStatus.COMMITTED.value),
        UniqueConstraint("checkout_id", name=f"uq_{name}_checkout_id"),
    )
