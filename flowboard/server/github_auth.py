"""GitHub App identity loading and installation token exchange with single-flight refresh."""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Protocol

import jwt
import requests

from flowboard.server.errors import AuthError
from flowboard.server.models import InstallationToken

logger = logging.getLogger(__name__)

DEFAULT_GITHUB_API_URL = "https://api.github.com"
GITHUB_API_HEADERS = {
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
}

# GitHub rejects app JWTs that live longer than ten minutes; iat is backdated for clock drift.
APP_JWT_BACKDATE_S = 60
APP_JWT_TTL_S = 540


@dataclass(frozen=True)
class GitHubAppIdentity:
    app_id: str | None
    private_key: str | None
    installation_id: str | None = None
    org: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.app_id and self.private_key)

    def redacted(self) -> dict[str, str]:
        return {
            "app_id": self.app_id or "unset",
            "private_key": _redact_token(self.private_key),
            "installation_id": self.installation_id or "auto",
            "org": self.org or "unset",
        }


class TokenProvider(Protocol):
    def get_access_token(self) -> InstallationToken: ...

    def invalidate(self) -> None: ...


def load_github_app_identity_from_env(env: dict[str, str] | None = None) -> GitHubAppIdentity:
    env_map = os.environ if env is None else env

    private_key = _clean(env_map.get("FLOWBOARD_GITHUB_APP_PRIVATE_KEY"))
    key_path = _clean(env_map.get("FLOWBOARD_GITHUB_APP_PRIVATE_KEY_PATH"))
    if private_key is not None:
        # Secret stores commonly flatten PEM newlines into literal "\n".
        private_key = private_key.replace("\\n", "\n")
    elif key_path is not None:
        try:
            private_key = _clean(Path(key_path).read_text(encoding="utf-8"))
        except OSError as exc:
            raise AuthError(f"Cannot read GitHub App private key from {key_path}") from exc

    return GitHubAppIdentity(
        app_id=_clean(env_map.get("FLOWBOARD_GITHUB_APP_ID")),
        private_key=private_key,
        installation_id=_clean(env_map.get("FLOWBOARD_GITHUB_APP_INSTALLATION_ID")),
        org=_clean(env_map.get("FLOWBOARD_GITHUB_ORG")),
    )


def load_static_token_from_env(env: dict[str, str] | None = None) -> str | None:
    env_map = os.environ if env is None else env
    return _clean(env_map.get("FLOWBOARD_GITHUB_TOKEN") or env_map.get("GITHUB_TOKEN"))


def build_app_jwt(identity: GitHubAppIdentity, now: float) -> str:
    """Sign the short-lived RS256 JWT that authenticates as the GitHub App itself."""

    if not identity.is_configured:
        raise AuthError("GitHub App identity is not configured (app id and private key required)")
    payload = {
        "iat": int(now) - APP_JWT_BACKDATE_S,
        "exp": int(now) + APP_JWT_TTL_S,
        "iss": str(identity.app_id),
    }
    try:
        return jwt.encode(payload, identity.private_key, algorithm="RS256")
    except (ValueError, TypeError, jwt.PyJWTError) as exc:
        raise AuthError("GitHub App private key is malformed") from exc


class InstallationTokenProvider:
    """Caches one installation token and serializes refreshes behind a lock.

    Callers that arrive while a refresh is in flight block on the lock, then
    re-check the cache and reuse the token the first caller fetched.
    """

    def __init__(
        self,
        identity: GitHubAppIdentity,
        base_url: str = DEFAULT_GITHUB_API_URL,
        session: requests.Session | None = None,
        timeout_s: float = 5.0,
        refresh_margin_s: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.identity = identity
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout_s = timeout_s
        self.refresh_margin_s = refresh_margin_s
        self.clock = clock
        self.exchange_count = 0
        self._token: InstallationToken | None = None
        self._lock = threading.Lock()

    @property
    def cached_token(self) -> InstallationToken | None:
        return self._token

    def get_access_token(self) -> InstallationToken:
        token = self._token
        if token is not None and token.is_valid(self._now(), self.refresh_margin_s):
            return token

        with self._lock:
            token = self._token
            if token is not None and token.is_valid(self._now(), self.refresh_margin_s):
                return token
            try:
                token = self._exchange()
            except AuthError as exc:
                logger.warning(
                    "GitHub App token exchange failed for %s: %s", self.identity.redacted(), exc
                )
                raise
            self._token = token
            return token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    def _exchange(self) -> InstallationToken:
        app_jwt = build_app_jwt(self.identity, now=self.clock())
        installation_id = self.identity.installation_id or self._discover_installation_id(app_jwt)
        payload = self._request(
            "POST", f"/app/installations/{installation_id}/access_tokens", app_jwt
        )
        if not isinstance(payload, dict):
            raise AuthError("GitHub returned a malformed installation token payload")
        value = payload.get("token")
        expires_at = _parse_timestamp(payload.get("expires_at"))
        if not isinstance(value, str) or not value or expires_at is None:
            raise AuthError("GitHub returned a malformed installation token payload")

        self.exchange_count += 1
        logger.info(
            "Refreshed installation token for installation %s, expires %s",
            installation_id,
            expires_at.isoformat(),
        )
        return InstallationToken(value=value, expires_at=expires_at)

    def _discover_installation_id(self, app_jwt: str) -> str:
        installations = self._request(
            "GET", "/app/installations", app_jwt, params={"per_page": "100"}
        )
        rows: list[dict[str, Any]] = []
        if isinstance(installations, list):
            rows = [row for row in installations if isinstance(row, dict)]
        if not rows:
            raise AuthError("GitHub App has no installations")

        expected_org = (self.identity.org or "").lower()
        if not expected_org:
            return str(rows[0].get("id", ""))
        for row in rows:
            account = row.get("account") if isinstance(row.get("account"), dict) else {}
            if str(account.get("login", "")).lower() == expected_org:
                return str(row.get("id", ""))
        raise AuthError(f"No GitHub App installation found for org {self.identity.org}")

    def _request(
        self,
        method: str,
        path: str,
        app_jwt: str,
        params: dict[str, str] | None = None,
    ) -> Any:
        headers = dict(GITHUB_API_HEADERS)
        headers["Authorization"] = f"Bearer {app_jwt}"
        try:
            response = self.session.request(
                method=method,
                url=f"{self.base_url}{path}",
                headers=headers,
                params=params,
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise AuthError(f"GitHub App token exchange failed: {exc}") from exc

        if response.status_code >= 400:
            raise AuthError(
                f"GitHub rejected the GitHub App credentials (HTTP {response.status_code})"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise AuthError("GitHub returned a non-JSON token exchange response") from exc


class StaticTokenProvider:
    """Token provider for a pre-issued token (PAT or local dry runs)."""

    def __init__(self, value: str, ttl: timedelta = timedelta(days=365)) -> None:
        if not value:
            raise AuthError("Static GitHub token is empty")
        self._token = InstallationToken(value=value, expires_at=datetime.now(timezone.utc) + ttl)

    def get_access_token(self) -> InstallationToken:
        return self._token

    def invalidate(self) -> None:
        """A static token cannot be refreshed; nothing to drop."""


_SHARED_PROVIDERS: dict[tuple[str, str, str], InstallationTokenProvider] = {}
_SHARED_PROVIDERS_LOCK = threading.Lock()


def shared_token_provider(
    identity: GitHubAppIdentity,
    base_url: str = DEFAULT_GITHUB_API_URL,
    timeout_s: float = 5.0,
) -> InstallationTokenProvider:
    """Return the process-wide provider for this app installation, creating it once."""

    key = (identity.app_id or "", identity.installation_id or "", base_url.rstrip("/"))
    with _SHARED_PROVIDERS_LOCK:
        provider = _SHARED_PROVIDERS.get(key)
        if provider is None:
            provider = InstallationTokenProvider(
                identity=identity, base_url=base_url, timeout_s=timeout_s
            )
            _SHARED_PROVIDERS[key] = provider
        return provider


def reset_shared_token_providers() -> None:
    with _SHARED_PROVIDERS_LOCK:
        _SHARED_PROVIDERS.clear()


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _clean(token: str | None) -> str | None:
    if token is None:
        return None
    value = token.strip()
    return value or None


def _redact_token(token: str | None) -> str:
    if token is None:
        return "unset"
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"
