"""
Error taxonomy for the API.

Every expected failure is an HTTPException subclass with a status code and a
default (Indonesian) message, so FastAPI maps it to a response on its own.
Anything else is treated as an internal error by the handlers registered in
`register_exception_handlers`.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Terjadi kesalahan pada server"
VALIDATION_ERROR_MESSAGE = "Validasi gagal"


class ChatError(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = INTERNAL_ERROR_MESSAGE

    def __init__(self, detail: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        super().__init__(
            status_code=self.status_code,
            detail=detail or self.default_detail,
            headers=headers,
        )


class Unauthorized(ChatError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Tidak terautentikasi, silakan login kembali"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(ChatError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Akses ditolak"


class NotFound(ChatError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Data tidak ditemukan"


class ValidationFailed(ChatError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = VALIDATION_ERROR_MESSAGE


class Conflict(ChatError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Data telah berubah, silakan coba lagi"


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors: Any = jsonable_encoder(exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": VALIDATION_ERROR_MESSAGE, "errors": errors},
    )


async def internal_exception_handler(request: Request, exc: Exception):
    logger.exception(f"[API] Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": INTERNAL_ERROR_MESSAGE},
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, internal_exception_handler)
