from __future__ import annotations

from dataclasses import dataclass
import json

from fastapi import Request

from .config import settings

UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClientInfo:
    ip: str
    user_agent: str
    device_info: str


def client_ip(request: Request) -> str:
    if settings.trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN


def client_info(request: Request) -> ClientInfo:
    headers = request.headers
    user_agent = headers.get("user-agent") or UNKNOWN
    device_info = {
        "userAgent": user_agent,
        "acceptLanguage": headers.get("accept-language"),
        "acceptEncoding": headers.get("accept-encoding"),
        "referer": headers.get("referer"),
        "origin": headers.get("origin"),
    }
    return ClientInfo(
        ip=client_ip(request),
        user_agent=user_agent,
        device_info=json.dumps(device_info),
    )
