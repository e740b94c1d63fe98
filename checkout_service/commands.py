from enum import Enum

from checkout_service.orchestrator import CheckoutOrchestrator
from shared.commands import CommandTable


class CheckoutCommand(str, Enum):
    LIST_ORDERS = "ListOrders"
    GET_ORDERS = "GetOrders"


async def _list_orders(orchestrator: CheckoutOrchestrator):
    return await orchestrator.list_orders()


async def _get_orders(orchestrator: CheckoutOrchestrator, user_name: str, order_date: str | None = None):
    # Without an order date, fall back to the user's whole order history.
    if order_date is None:
        return await orchestrator.list_orders_for_user(user_name)
    return await orchestrator.get_order(user_name, order_date)


CHECKOUT_COMMANDS: CommandTable[CheckoutCommand, CheckoutOrchestrator] = CommandTable(
    routes={
        ("GET", "/checkout"): CheckoutCommand.LIST_ORDERS,
        ("GET", "/checkout/{userName}"): CheckoutCommand.GET_ORDERS,
    },
    handlers={
        CheckoutCommand.LIST_ORDERS: _list_orders,
        CheckoutCommand.GET_ORDERS: _get_orders,
    },
)
