from enum import Enum

from app.services.cart_service import CartService
from shared.commands import CommandTable
from shared.events import Cart, CheckoutRequest


class CartCommand(str, Enum):
    LIST_CARTS = "ListCarts"
    GET_CART = "GetCart"
    ADD_ITEMS = "AddItems"
    DELETE_CART = "DeleteCart"
    CHECKOUT = "Checkout"


async def _list_carts(service: CartService):
    return await service.list_carts()


async def _get_cart(service: CartService, user_name: str):
    return await service.get_cart(user_name)


async def _add_items(service: CartService, cart: Cart):
    return await service.add_items(cart)


async def _delete_cart(service: CartService, user_name: str):
    return await service.delete_cart(user_name)


async def _checkout(service: CartService, checkout_request: CheckoutRequest):
    return await service.initiate_checkout(checkout_request)


CART_COMMANDS: CommandTable[CartCommand, CartService] = CommandTable(
    routes={
        ("GET", "/cart"): CartCommand.LIST_CARTS,
        ("GET", "/cart/{userName}"): CartCommand.GET_CART,
        ("POST", "/cart"): CartCommand.ADD_ITEMS,
        ("DELETE", "/cart/{userName}"): CartCommand.DELETE_CART,
        ("POST", "/cart/checkout"): CartCommand.CHECKOUT,
    },
    handlers={
        CartCommand.LIST_CARTS: _list_carts,
        CartCommand.GET_CART: _get_cart,
        CartCommand.ADD_ITEMS: _add_items,
        CartCommand.DELETE_CART: _delete_cart,
        CartCommand.CHECKOUT: _checkout,
    },
)
