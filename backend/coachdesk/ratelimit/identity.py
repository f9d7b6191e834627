from typing import Mapping, Optional

from fastapi import Request

PROXY_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


def client_ip_from_headers(headers: Mapping[str, str], fallback: Optional[str] = None) -> str:
    """
    Precedence:
    1) first entry of x-forwarded-for
    2) x-real-ip
    3) cf-connecting-ip
    4) the socket peer, then "unknown"
    """
    for name in PROXY_HEADERS:
        value = headers.get(name)
        if value:
            first = value.split(",")[0].strip()
            if first:
                return first
    return fallback or "unknown"


def resolve_identity(req: Request) -> str:
    client = getattr(req, "client", None)
    peer = getattr(client, "host", None) if client else None
    return f"ip:{client_ip_from_headers(req.headers, peer)}"
