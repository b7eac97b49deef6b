"""
Credential exchange with the external platform: POST https://<shop>/admin/oauth/access_token.
Bounded by a timeout; never retried here (the caller restarts from initiation).
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import httpx

from storefront_auth.config import API_KEY, API_SECRET, EXCHANGE_TIMEOUT_SECONDS
from storefront_auth.errors import ExchangeError

logger = logging.getLogger(__name__)


@dataclass
class ExchangedCredential:
    token: str
    scopes: list[str] = field(default_factory=list)
    expires_at: datetime | None = None  # None = non-expiring (background)
    associated_user_id: str | None = None


def _parse_scopes(value) -> list[str]:
    """Platform returns comma-separated scopes; accept space-separated or a list too."""
    if not value:
        return []
    if isinstance(value, list):
        return [str(s).strip() for s in value if str(s).strip()]
    return [s.strip() for s in str(value).replace(",", " ").split() if s.strip()]


def parse_token_response(data: dict, now: datetime | None = None) -> ExchangedCredential:
    token = data.get("access_token")
    if not token or not isinstance(token, str):
        raise ExchangeError("Token response missing access_token")
    expires_at = None
    expires_in = data.get("expires_in")
    if expires_in:
        try:
            expires_at = (now or datetime.now(timezone.utc)) + timedelta(seconds=int(expires_in))
        except (TypeError, ValueError):
            raise ExchangeError("Token response has invalid expires_in")
    user = data.get("associated_user") or {}
    user_id = user.get("id") if isinstance(user, dict) else None
    return ExchangedCredential(
        token=token,
        scopes=_parse_scopes(data.get("scope")),
        expires_at=expires_at,
        associated_user_id=str(user_id) if user_id is not None else None,
    )


class HttpCredentialExchanger:
    """Exchanges an authorization code over HTTPS using the app's API key and secret."""

    def __init__(
        self,
        client_id: str = API_KEY,
        client_secret: str = API_SECRET,
        timeout: float = EXCHANGE_TIMEOUT_SECONDS,
        scheme: str = "https",
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.scheme = scheme

    def token_url(self, tenant_id: str) -> str:
        return f"{self.scheme}://{tenant_id}/admin/oauth/access_token"

    def exchange(self, tenant_id: str, authorization_code: str) -> ExchangedCredential:
        if not authorization_code:
            raise ExchangeError("Missing authorization code")
        try:
            r = httpx.post(
                self.token_url(tenant_id),
                json={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "code": authorization_code,
                },
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.warning("Credential exchange transport error for %s: %s", tenant_id, type(e).__name__)
            raise ExchangeError(f"Transport error: {type(e).__name__}") from e

        if r.status_code != 200:
            try:
                err = r.json()
            except ValueError:
                err = {}
            if not isinstance(err, dict):
                err = {}
            desc = err.get("error_description") or err.get("error") or f"HTTP {r.status_code}"
            logger.warning("Credential exchange rejected for %s: %s", tenant_id, desc)
            raise ExchangeError(f"Exchange rejected: {desc}")

        try:
            data = r.json()
        except ValueError as e:
            raise ExchangeError("Token response is not JSON") from e
        if not isinstance(data, dict):
            raise ExchangeError("Token response is not an object")
        return parse_token_response(data)
