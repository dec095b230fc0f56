"""Authentication helpers and route dependencies."""

from __future__ import annotations

import hashlib
import hmac
import secrets
import time
from typing import Callable

from fastapi import Depends, Header, HTTPException, status

from media_janitor.config.settings import get_settings


def is_admin(token: str | None) -> bool:
    """Return True when ``token`` matches the configured admin token."""

    expected = get_settings().admin_token
    if not expected or not token:
        return False
    return hmac.compare_digest(token, expected)


def require_internal_token(
    x_internal_token: str | None = Header(default=None, alias="X-Internal-Token"),
) -> None:
    """
    Ensure that administrative endpoints are protected by an internal token.

    A single shared secret stands in for user management here.
    """

    settings = get_settings()
    if not settings.admin_token:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin key is not configured.",
        )

    if not is_admin(x_internal_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid administrative token.",
        )


InternalAuthDependency = Depends(require_internal_token)


class NonceManager:
    """Issues single-use, time-limited tokens guarding the trigger action.

    A nonce is ``<issued>.<random>.<signature>`` signed with HMAC-SHA256.
    Consumed nonces are remembered until they would have expired anyway.
    """

    def __init__(
        self,
        secret: str,
        *,
        ttl_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret = secret.encode("utf-8")
        self._ttl = ttl_seconds
        self._clock = clock
        self._used: dict[str, float] = {}

    def _sign(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self) -> str:
        payload = f"{int(self._clock())}.{secrets.token_hex(8)}"
        return f"{payload}.{self._sign(payload)}"

    def consume(self, nonce: str | None) -> bool:
        """Validate and burn ``nonce``; False if forged, expired or reused."""

        if not nonce or not self._secret:
            return False
        issued_raw, _, rest = nonce.partition(".")
        random_part, _, signature = rest.partition(".")
        if not issued_raw.isdigit() or not random_part or not signature:
            return False

        payload = f"{issued_raw}.{random_part}"
        if not hmac.compare_digest(signature, self._sign(payload)):
            return False

        now = self._clock()
        issued = int(issued_raw)
        if now - issued > self._ttl:
            return False

        self._forget_expired(now)
        if payload in self._used:
            return False
        self._used[payload] = issued + self._ttl
        return True

    def _forget_expired(self, now: float) -> None:
        for key in [key for key, expires in self._used.items() if expires < now]:
            del self._used[key]
