from __future__ import annotations

from fastapi import HTTPException

from tools.errors import AuthError, DomainError, SGPError


def gateway_http_error(exc: SGPError) -> HTTPException:
    if isinstance(exc, AuthError):
        return HTTPException(status_code=401, detail="invalid_credentials")
    if isinstance(exc, DomainError):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=502, detail="backend_unavailable")
