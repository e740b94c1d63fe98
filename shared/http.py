from enum import Enum
from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from shared.commands import CommandTable
from shared.results import ErrorKind, Result

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.EMPTY_CART: status.HTTP_400_BAD_REQUEST,
    ErrorKind.STORAGE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.PUBLISH: status.HTTP_502_BAD_GATEWAY,
}


def result_response(result: Result, method: str) -> JSONResponse:
    if result.ok:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"body": jsonable_encoder(result.value, by_alias=True), "message": f"SUCCESS - {method}"},
        )
    return JSONResponse(status_code=_STATUS_BY_KIND[result.error.kind], content=result.error.to_payload())


async def dispatch(request: Request, table: CommandTable, command: Enum, service: Any, **params: Any) -> JSONResponse:
    """Run the command bound to the route and render its result."""
    result = await table.execute(command, service, **params)
    return result_response(result, request.method)


def _describe(error: dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
    return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and parameters get the same payload as any other validation failure."""
    message = "; ".join(_describe(error) for error in exc.errors()) or "Malformed request"
    return result_response(Result.failure(ErrorKind.VALIDATION, message), request.method)
