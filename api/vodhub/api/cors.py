"""CORS for the JSON API.

The media proxy sets its own CORS headers and answers its own preflights, so
requests under its prefix bypass the middleware entirely.
"""

from __future__ import annotations

from typing import Iterable

from starlette.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send


class ApiCORSMiddleware(CORSMiddleware):
    def __init__(self, app: ASGIApp, *, exempt_prefixes: Iterable[str] = (), **options) -> None:
        super().__init__(app, **options)
        self.exempt_prefixes = tuple(exempt_prefixes)

    def is_exempt(self, path: str) -> bool:
        return any(path == prefix or path.startswith(f"{prefix}/") for prefix in self.exempt_prefixes)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and self.is_exempt(scope["path"]):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)
