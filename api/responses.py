"""
api/responses.py -- Response envelope helpers shared by all routers.

The trace ID comes from request.state.trace_id, set by the trace middleware
in api/main.py (X-Trace-ID header if the client sent one, else a UUID4).
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, SuccessEnvelope


def trace_id(request: Request) -> str:
    value = getattr(request.state, "trace_id", None)
    if not value:
        value = str(uuid.uuid4())
        request.state.trace_id = value
    return value


def success(request: Request, data: Any, status_code: int = 200) -> JSONResponse:
    body = SuccessEnvelope(data=jsonable_encoder(data), trace_id=trace_id(request))
    return JSONResponse(status_code=status_code, content=body.model_dump())


def failure(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    detail: str | None = None,
) -> JSONResponse:
    body = ErrorResponse(
        error=ErrorDetail(code=code, message=message, detail=detail),
        trace_id=trace_id(request),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))
