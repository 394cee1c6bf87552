from __future__ import annotations

from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class RequestRejected(Exception):
    """A refusal whose JSON body is part of the public contract, unlike ``HTTPException``'s ``{detail}``."""

    def __init__(self, status_code: int, body: dict[str, Any], headers: Optional[dict[str, str]] = None) -> None:
        super().__init__(body.get("error", "Request rejected"))
        self.status_code = status_code
        self.body = body
        self.headers = headers


async def request_rejected_handler(_request: Request, exc: RequestRejected) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.body, headers=exc.headers)
