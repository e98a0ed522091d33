from __future__ import annotations

from typing import Protocol

from messaging_service.application.dto.principal import Principal


class TokenVerifier(Protocol):
    async def verify(self, token: str) -> Principal: ...


class SessionProvider(Protocol):
    """Client side of auth: hands out the bearer token for outbound calls."""

    async def get_session(self) -> str: ...


class StaticSession:
    def __init__(self, access_token: str) -> None:
        self._access_token = access_token

    async def get_session(self) -> str:
        return self._access_token
