from sqlalchemy import JSON, Column, DateTime, MetaData, String, Table


def cart_table(metadata: MetaData, name: str) -> Table:
    """One row per user; the whole item list is stored as a JSON document."""
    return Table(
        name,
        metadata,
        Column("user_name", String(100), primary_key=True),
        Column("items", JSON, nullable=False),
        Column("pending_checkout_id", String(36), nullable=True),
        Column("updated_at", DateTime(timezone=True), nullable=False),
    )
