from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from checkout_service.commands import CHECKOUT_COMMANDS, CheckoutCommand
from checkout_service.orchestrator import CheckoutOrchestrator
from shared.http import dispatch

router = APIRouter()


def get_orchestrator(request: Request) -> CheckoutOrchestrator:
    return request.app.state.orchestrator


@router.get("")
async def list_orders(
    request: Request,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    return await dispatch(request, CHECKOUT_COMMANDS, CheckoutCommand.LIST_ORDERS, orchestrator)


@router.get("/{userName}")
async def get_orders(
    userName: str,
    request: Request,
    orderDate: str | None = Query(default=None),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    return await dispatch(
        request,
        CHECKOUT_COMMANDS,
        CheckoutCommand.GET_ORDERS,
        orchestrator,
        user_name=userName,
        order_date=orderDate,
    )
