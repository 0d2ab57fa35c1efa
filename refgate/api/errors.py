"""Exception handlers: every error leaves the API as ``{"detail": "..."}``."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from refgate.dao.base import InvalidCursorError
from refgate.services import ServiceError

# request part prefixes pydantic puts in front of field locations
_LOC_ROOTS = {"body", "query", "path", "header"}


def _detail(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


def format_validation_errors(errors: list[dict]) -> str:
    """Flatten pydantic errors into ``field.sub: message; ...``."""
    parts = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ())]
        if len(loc) > 1 and loc[0] in _LOC_ROOTS:
            loc = loc[1:]
        parts.append(f"{'.'.join(loc)}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


async def _on_service_error(_request: Request, exc: ServiceError) -> JSONResponse:
    return _detail(exc.http_status, str(exc))


async def _on_request_validation(_request: Request, exc: RequestValidationError) -> JSONResponse:
    return _detail(422, format_validation_errors(list(exc.errors())))


async def _on_invalid_cursor(_request: Request, exc: InvalidCursorError) -> JSONResponse:
    return _detail(422, str(exc))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, _on_service_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _on_request_validation)  # type: ignore[arg-type]
    app.add_exception_handler(InvalidCursorError, _on_invalid_cursor)  # type: ignore[arg-type]
