from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


def validation_error(field: str, message: str) -> RequestValidationError:
    """
    Business-rule failure reported exactly like a schema failure, so clients
    only ever parse one 422 shape.
    """
    return RequestValidationError(
        [{"loc": ("body", field), "msg": message, "type": "value_error"}]
    )


def format_validation_errors(errors) -> dict[str, list[str]]:
    fields: dict[str, list[str]] = {}
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "form")]
        field = ".".join(loc) or "request"
        msg = err.get("msg", "Invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        fields.setdefault(field, []).append(msg)
    return fields


async def handle_validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "message": "Validation failed",
            "errors": format_validation_errors(exc.errors()),
        },
    )


async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception(
        "Unhandled exception | method=%s | path=%s",
        request.method,
        request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )
