"""FastAPI dependencies."""

from fastapi import Request

from newsglobe.config import ServiceContext


def get_context(request: Request) -> ServiceContext:
    """The service context created at application start-up."""
    return request.app.state.context


def client_ip(request: Request) -> str:
    """Best-effort client address, honouring reverse-proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client is not None:
        return request.client.host
    return "unknown"
