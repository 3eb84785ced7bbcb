import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _validation_message(error: dict) -> str:
    message = str(error.get("msg", "Invalid request"))
    if error.get("type") == "value_error":
        # Raised by our own validators, already phrased for the client.
        return message.removeprefix("Value error, ")
    location = ".".join(str(part) for part in error.get("loc", ()) if part not in {"body", "query", "path"})
    return f"{location}: {message}" if location else message


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = _validation_message(errors[0]) if errors else "Invalid request"
    details = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": str(err.get("msg", ""))}
        for err in errors
    ]
    return JSONResponse({"error": message, "details": details}, status_code=400)
