"""
Salesforce Authentication Service using the OAuth 2.0 password grant.

This module handles authentication to Salesforce with a service account.
It provides:
- Token exchange (client id/secret + username + password/security token)
- An optional shared token cache with expiry, guarded by a lock
- Status reporting for the status endpoint

By default every request authenticates fresh; the cache is only used when
SALESFORCE_TOKEN_CACHE is enabled.

Usage:
    from forecast.services.sf_auth import get_session, clear_token_cache
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

import requests

from forecast.config import (
    SalesforceCredentials,
    DEFAULT_LOGIN_URL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TOKEN_TTL_SECONDS,
)
from forecast.errors import AuthError, ConfigurationError

logger = logging.getLogger(__name__)

TOKEN_PATH = "/services/oauth2/token"

# Cached tokens with less than this many seconds left are refreshed
TOKEN_REFRESH_MARGIN_SECONDS = 300


@dataclass(frozen=True)
class Session:
    """Bearer token plus the org's instance URL. Valid for one request unless cached."""

    access_token: str = field(repr=False)
    instance_url: str
    issued_at: Optional[datetime] = None


# Token cache, only touched while holding _token_lock
_token_lock = threading.Lock()
_token_cache: Dict[str, Any] = {
    "session": None,
    "cache_key": None,
    "expires_on": None,
    "last_refresh": None,
    "error": None,
}


def _parse_issued_at(issued_at: Optional[str]) -> datetime:
    """Parse the issued_at field (epoch milliseconds as a string)."""
    try:
        return datetime.fromtimestamp(int(issued_at) / 1000, tz=timezone.utc)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc)


def _require_credentials(credentials: Optional[SalesforceCredentials]):
    if credentials is None:
        raise ConfigurationError("Missing Salesforce credentials", missing=["SALESFORCE_CREDENTIALS"])
    missing = credentials.missing_fields()
    if missing:
        raise ConfigurationError(
            f"Missing Salesforce credentials: {', '.join(missing)}",
            missing=missing,
        )


def authenticate(
    credentials: SalesforceCredentials,
    login_url: str = DEFAULT_LOGIN_URL,
    timeout: int = DEFAULT_REQUEST_TIMEOUT,
) -> Session:
    """
    Exchange the service-account credentials for an access token.

    The password sent to Salesforce is the configured password with the
    security token appended.

    Args:
        credentials: The five service-account secrets.
        login_url: Token host (login.salesforce.com or test.salesforce.com).
        timeout: Seconds before the HTTP call gives up.

    Returns:
        Session with access_token and instance_url.

    Raises:
        ConfigurationError: If any credential is missing (no network call made).
        AuthError: If Salesforce rejects the exchange.
    """
    _require_credentials(credentials)

    url = f"{login_url.rstrip('/')}{TOKEN_PATH}"
    params = {
        "grant_type": "password",
        "client_id": credentials.client_id,
        "client_secret": credentials.client_secret,
        "username": credentials.username,
        "password": credentials.password + credentials.security_token,
    }

    response = requests.post(
        url,
        data=params,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        timeout=timeout,
    )

    if not response.ok:
        body = response.text
        logger.warning(f"Salesforce token exchange failed with HTTP {response.status_code}")
        raise AuthError(
            f"Salesforce auth failed: {body}",
            status_code=response.status_code,
            body=body,
        )

    try:
        data = response.json()
    except ValueError:
        raise AuthError("Salesforce auth failed: invalid JSON from token endpoint",
                        status_code=response.status_code, body=response.text)

    access_token = data.get("access_token") if isinstance(data, dict) else None
    instance_url = data.get("instance_url") if isinstance(data, dict) else None
    if not access_token or not instance_url:
        raise AuthError("Salesforce auth failed: token response missing access_token or instance_url",
                        status_code=response.status_code, body=response.text)

    logger.info(f"Authenticated to Salesforce instance {instance_url}")
    return Session(
        access_token=access_token,
        instance_url=instance_url.rstrip("/"),
        issued_at=_parse_issued_at(data.get("issued_at")),
    )


def _cache_key(credentials: SalesforceCredentials, login_url: str) -> tuple:
    return (login_url.rstrip("/"), credentials.client_id, credentials.username)


def get_session(
    credentials: SalesforceCredentials,
    login_url: str = DEFAULT_LOGIN_URL,
    timeout: int = DEFAULT_REQUEST_TIMEOUT,
    use_cache: bool = False,
    ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
) -> Session:
    """
    Get a session, reusing the cached one when caching is enabled.

    A cached session is reused while it has more than
    TOKEN_REFRESH_MARGIN_SECONDS left. Refresh happens under the lock so
    concurrent requests trigger at most one token exchange.
    """
    _require_credentials(credentials)

    if not use_cache:
        return authenticate(credentials, login_url=login_url, timeout=timeout)

    key = _cache_key(credentials, login_url)
    with _token_lock:
        now = datetime.now(timezone.utc)
        cached = _token_cache["session"]
        expires_on = _token_cache["expires_on"]
        if (
            cached is not None
            and _token_cache["cache_key"] == key
            and expires_on
            and (expires_on - now).total_seconds() > TOKEN_REFRESH_MARGIN_SECONDS
        ):
            return cached

        try:
            session = authenticate(credentials, login_url=login_url, timeout=timeout)
        except AuthError as e:
            _token_cache.update({
                "session": None,
                "cache_key": None,
                "expires_on": None,
                "last_refresh": now,
                "error": str(e),
            })
            raise

        _token_cache.update({
            "session": session,
            "cache_key": key,
            "expires_on": now + timedelta(seconds=ttl_seconds),
            "last_refresh": now,
            "error": None,
        })
        logger.info(f"Salesforce token cached, expires at {_token_cache['expires_on']}")
        return session


def invalidate_session(session: Session):
    """Drop the cached session if it is the given one (e.g. after a 401)."""
    with _token_lock:
        cached = _token_cache["session"]
        if cached is not None and cached.access_token == session.access_token:
            _token_cache["session"] = None
            _token_cache["cache_key"] = None
            _token_cache["expires_on"] = None
            logger.info("Cached Salesforce token invalidated")


def clear_token_cache():
    """Clear the cached token (forces re-authentication on next request)."""
    with _token_lock:
        _token_cache.update({
            "session": None,
            "cache_key": None,
            "expires_on": None,
            "last_refresh": None,
            "error": None,
        })
    logger.info("Salesforce token cache cleared")


def get_auth_status() -> Dict[str, Any]:
    """
    Get the current token cache status for the status endpoint.

    Returns:
        Dict with:
        - cached: bool
        - instance_url: str or None
        - expires_on: datetime or None
        - expires_in_minutes: int or None
        - last_refresh: datetime or None
        - error: str or None
    """
    with _token_lock:
        session = _token_cache["session"]
        expires_on = _token_cache["expires_on"]
        status = {
            "cached": False,
            "instance_url": session.instance_url if session else None,
            "expires_on": expires_on,
            "expires_in_minutes": None,
            "last_refresh": _token_cache["last_refresh"],
            "error": _token_cache["error"],
        }

    if session and expires_on:
        remaining = (expires_on - datetime.now(timezone.utc)).total_seconds()
        if remaining > 0:
            status["cached"] = True
            status["expires_in_minutes"] = int(remaining / 60)

    return status
