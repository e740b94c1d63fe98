from app.models.cart import cart_table

__all__ = ["cart_table"]
