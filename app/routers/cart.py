import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.commands import CART_COMMANDS, CartCommand
from app.services.cart_service import CartService
from shared.events import Cart, CheckoutRequest
from shared.http import dispatch

router = APIRouter()
logger = logging.getLogger(__name__)


def get_cart_service(request: Request) -> CartService:
    return request.app.state.cart_service


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


@router.get("")
async def list_carts(request: Request, service: CartService = Depends(get_cart_service)) -> JSONResponse:
    return await dispatch(request, CART_COMMANDS, CartCommand.LIST_CARTS, service)


@router.post("/checkout")
async def checkout(
    body: CheckoutRequest,
    request: Request,
    service: CartService = Depends(get_cart_service),
) -> JSONResponse:
    logger.info(
        "Received checkout request",
        extra={"request_id": _request_id(request), "user_name": body.user_name},
    )
    return await dispatch(request, CART_COMMANDS, CartCommand.CHECKOUT, service, checkout_request=body)


@router.post("")
async def add_items(body: Cart, request: Request, service: CartService = Depends(get_cart_service)) -> JSONResponse:
    logger.info(
        "Received add_items request",
        extra={"request_id": _request_id(request), "user_name": body.user_name},
    )
    return await dispatch(request, CART_COMMANDS, CartCommand.ADD_ITEMS, service, cart=body)


@router.get("/{userName}")
async def get_cart(userName: str, request: Request, service: CartService = Depends(get_cart_service)) -> JSONResponse:
    return await dispatch(request, CART_COMMANDS, CartCommand.GET_CART, service, user_name=userName)


@router.delete("/{userName}")
async def delete_cart(
    userName: str,
    request: Request,
    service: CartService = Depends(get_cart_service),
) -> JSONResponse:
    logger.info(
        "Received delete_cart request",
        extra={"request_id": _request_id(request), "user_name": userName},
    )
    return await dispatch(request, CART_COMMANDS, CartCommand.DELETE_CART, service, user_name=userName)
