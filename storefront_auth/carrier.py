"""
Fallback carrier for the handshake nonce: an HS256-signed, time-boxed JWT held by the client
(HTTP-only cookie). Consulted only when the nonce store has no pending handshake, e.g. after
a restart or on another instance. Tamper-evident, not confidential.

Signing secret: STOREFRONT_CARRIER_SECRET, else loaded from file, else generated and saved so
tokens issued before a restart still verify after it.
"""
import logging
import secrets
import time
from pathlib import Path
from typing import Callable

import jwt

from storefront_auth.config import CARRIER_SECRET, CARRIER_SECRET_PATH, HANDSHAKE_TTL_SECONDS
from storefront_auth.errors import CarrierError

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"
_TOKEN_TYPE = "handshake"
_SECRET_BYTES = 32


def load_or_create_secret(path: str | None) -> bytes:
    """Load the signing secret from path, or generate and save one."""
    if not path:
        path = ".carrier_secret"
    p = Path(path)
    if p.exists():
        try:
            raw = p.read_text(encoding="ascii").strip()
            if raw:
                return raw.encode("ascii")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Failed to load carrier secret from %s: %s; generating new secret", path, e)
    value = secrets.token_urlsafe(_SECRET_BYTES)
    try:
        p.write_text(value, encoding="ascii")
        p.chmod(0o600)
        logger.info("Generated and saved carrier secret to %s", path)
    except OSError as e:
        logger.warning("Could not save carrier secret to %s: %s", path, e)
    return value.encode("ascii")


class HandshakeCarrier:
    """issue(nonce) -> token; read(token) -> nonce. TTL must match the nonce store's."""

    def __init__(
        self,
        secret: str | bytes,
        ttl_seconds: int = HANDSHAKE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("carrier secret must not be empty")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._secret = secret.encode("utf-8") if isinstance(secret, str) else secret
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    @classmethod
    def from_config(cls, clock: Callable[[], float] = time.time) -> "HandshakeCarrier":
        secret = CARRIER_SECRET or load_or_create_secret(CARRIER_SECRET_PATH)
        return cls(secret, ttl_seconds=HANDSHAKE_TTL_SECONDS, clock=clock)

    def issue(self, nonce: str, ttl: int | None = None, tenant_id: str | None = None) -> str:
        now = int(self._clock())
        payload = {
            "typ": _TOKEN_TYPE,
            "nonce": nonce,
            "iat": now,
            "exp": now + (ttl if ttl is not None else self.ttl_seconds),
        }
        if tenant_id:
            payload["sub"] = tenant_id
        token = jwt.encode(payload, self._secret, algorithm=_ALGORITHM)
        if isinstance(token, bytes):
            token = token.decode("utf-8")
        return token

    def read(self, token: str | None, tenant_id: str | None = None) -> str:
        """
        Return the embedded nonce. Raises CarrierError if the token is missing, malformed,
        badly signed, expired, not a handshake token, or bound to another tenant.
        """
        if not token:
            raise CarrierError("No carrier token")
        try:
            # Time claims are checked against the injected clock below, not PyJWT's wall clock
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False, "verify_iat": False, "require": ["exp", "nonce"]},
            )
        except jwt.InvalidTokenError as e:
            raise CarrierError(f"Invalid carrier token: {e}") from e
        if payload.get("typ") != _TOKEN_TYPE:
            raise CarrierError("Carrier token has wrong type")
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or self._clock() >= exp:
            raise CarrierError("Carrier token expired")
        if tenant_id is not None and payload.get("sub") != tenant_id:
            raise CarrierError("Carrier token bound to another tenant")
        nonce = payload.get("nonce")
        if not isinstance(nonce, str) or not nonce:
            raise CarrierError("Carrier token has no nonce")
        return nonce

