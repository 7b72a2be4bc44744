"""Request-scoped dependency providers."""

from __future__ import annotations

from typing import Annotated

from litestar import Request
from litestar.params import Dependency

from litestar_shipdesk.exceptions import CallerNotAuthenticatedError
from litestar_shipdesk.protocols import CallerResolver


class HeaderCallerResolver:
    """Reads the admin id set by an upstream authentication layer."""

    def __init__(self, header: str) -> None:
        self.header = header

    async def resolve(self, request: Request) -> str | None:
        value = request.headers.get(self.header)
        return value.strip() if value and value.strip() else None


async def provide_admin_id(
    request: Request,
    caller_resolver: Annotated[
        CallerResolver, Dependency(skip_validation=True)
    ],
) -> str:
    """Authenticated admin id; 401 when the caller is anonymous."""
    admin_id = await caller_resolver.resolve(request)
    if not admin_id:
        raise CallerNotAuthenticatedError()
    return admin_id
