from __future__ import annotations

import jwt

from messaging_service.application.dto.principal import Principal


def principal_from_claims(payload: dict) -> Principal:
    """User ids are opaque strings (the identity backend issues UUIDs)."""
    roles = payload.get("roles")
    if roles is None:
        role = payload.get("role")
        roles = [role] if role else []
    return Principal(user_id=str(payload["sub"]), roles=list(roles))


class HS256Verifier:
    """Verify JWTs signed with a shared HS256 secret."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self._secret = secret
        self._algorithm = algorithm

    async def verify(self, token: str) -> Principal:
        payload = jwt.decode(
            token,
            self._secret,
            algorithms=[self._algorithm],
            options={"require": ["sub"], "verify_aud": False},
        )
        return principal_from_claims(payload)
