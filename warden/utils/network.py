"""Client address helpers."""

import ipaddress

from starlette.requests import Request


def get_client_ip(request: Request, trust_proxy_headers: bool = False) -> str:
    """Source address a request is attributed to.

    With ``trust_proxy_headers`` the first ``X-Forwarded-For`` hop wins;
    only enable it behind a proxy that overwrites that header.
    """
    if trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def validate_ip_address(value: str) -> str:
    """Validate and return a normalized IPv4/IPv6 address string.

    Raises ValueError if the input is not a valid address.
    """
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        raise ValueError(f"Invalid IP address: {value!r}")
