"""
Configuration for the Salesforce connection.

Credentials are read from the environment exactly once, when the app
factory runs, and handed to the auth service from there.

Environment variables:
    SALESFORCE_CLIENT_ID, SALESFORCE_CLIENT_SECRET, SALESFORCE_USERNAME,
    SALESFORCE_PASSWORD, SALESFORCE_SECURITY_TOKEN (all required)
    SALESFORCE_LOGIN_URL, SALESFORCE_API_VERSION, SALESFORCE_REQUEST_TIMEOUT,
    SALESFORCE_TOKEN_CACHE, SALESFORCE_TOKEN_TTL_SECONDS (optional)
"""
import os
from dataclasses import dataclass, field, fields
from typing import Dict, List, Mapping, Optional, Any

DEFAULT_LOGIN_URL = "https://login.salesforce.com"
DEFAULT_API_VERSION = "v58.0"
DEFAULT_REQUEST_TIMEOUT = 45
DEFAULT_TOKEN_TTL_SECONDS = 3600

# Maps dataclass field -> environment variable
CREDENTIAL_ENV_VARS = {
    "client_id": "SALESFORCE_CLIENT_ID",
    "client_secret": "SALESFORCE_CLIENT_SECRET",
    "username": "SALESFORCE_USERNAME",
    "password": "SALESFORCE_PASSWORD",
    "security_token": "SALESFORCE_SECURITY_TOKEN",
}


@dataclass(frozen=True)
class SalesforceCredentials:
    """Service-account secrets for the OAuth password grant."""

    client_id: Optional[str] = None
    client_secret: Optional[str] = field(default=None, repr=False)
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    security_token: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SalesforceCredentials":
        """Build credentials from environment variables (blank values count as missing)."""
        environ = os.environ if environ is None else environ
        values = {}
        for attr, env_var in CREDENTIAL_ENV_VARS.items():
            value = (environ.get(env_var) or "").strip()
            values[attr] = value or None
        return cls(**values)

    def missing_fields(self) -> List[str]:
        """Return the environment variable names of any missing credentials."""
        return [
            CREDENTIAL_ENV_VARS[f.name]
            for f in fields(self)
            if not getattr(self, f.name)
        ]

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()


def _parse_bool(value: Optional[str]) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def load_salesforce_config(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Build the SALESFORCE_* Flask config entries from the environment.

    Returns:
        Dict suitable for ``app.config.update()``.
    """
    environ = os.environ if environ is None else environ
    return {
        "SALESFORCE_CREDENTIALS": SalesforceCredentials.from_env(environ),
        "SALESFORCE_LOGIN_URL": environ.get("SALESFORCE_LOGIN_URL", DEFAULT_LOGIN_URL).rstrip("/"),
        "SALESFORCE_API_VERSION": environ.get("SALESFORCE_API_VERSION", DEFAULT_API_VERSION),
        "SALESFORCE_REQUEST_TIMEOUT": int(environ.get("SALESFORCE_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)),
        "SALESFORCE_TOKEN_CACHE": _parse_bool(environ.get("SALESFORCE_TOKEN_CACHE")),
        "SALESFORCE_TOKEN_TTL_SECONDS": int(
            environ.get("SALESFORCE_TOKEN_TTL_SECONDS", DEFAULT_TOKEN_TTL_SECONDS)
        ),
    }
