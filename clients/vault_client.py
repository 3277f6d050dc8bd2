"""
HashiCorp Vault access for revenue service connection secrets.

AppRole authentication, KV v2 secrets, fail-fast on missing configuration.
Every path is scoped under one prefix ('revenue/' unless VAULT_SECRET_PREFIX
says otherwise), so callers cannot reach other services' secrets.

Secrets are read once per path and cached for the life of the process;
reset_secret_cache() forces a re-read.
"""

import os
import logging
import threading
from typing import Dict

import hvac
from hvac.exceptions import InvalidPath, Unauthorized, Forbidden

logger = logging.getLogger(__name__)

DEFAULT_SECRET_PREFIX = "revenue"

_vault_client_instance: "VaultClient | None" = None
_secret_cache: Dict[str, Dict[str, str]] = {}
_cache_lock = threading.Lock()


class VaultClient:
    """Vault client with AppRole auth and env-based config."""

    def __init__(
        self,
        vault_addr: str | None = None,
        vault_namespace: str | None = None,
        secret_prefix: str | None = None,
    ):
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        self.vault_namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        self.secret_prefix = secret_prefix or os.getenv("VAULT_SECRET_PREFIX") or DEFAULT_SECRET_PREFIX
        role_id = os.getenv("VAULT_ROLE_ID")
        secret_id = os.getenv("VAULT_SECRET_ID")

        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")
        if not role_id or not secret_id:
            raise ValueError(
                "VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required"
            )

        client_kwargs = {"url": self.vault_addr}
        if self.vault_namespace:
            client_kwargs["namespace"] = self.vault_namespace
        self.client = hvac.Client(**client_kwargs)

        try:
            auth = self.client.auth.approle.login(role_id=role_id, secret_id=secret_id)
        except Exception as e:
            logger.error("AppRole authentication failed: %s", e)
            raise PermissionError(f"AppRole authentication failed: {e}")
        self.client.token = auth["auth"]["client_token"]

        if not self.client.is_authenticated():
            raise PermissionError("Vault authentication failed")
        logger.info("Vault client initialized: %s (prefix=%s)", self.vault_addr, self.secret_prefix)

    def full_path(self, path: str) -> str:
        return f"{self.secret_prefix}/{path}"

    def read_secret(self, path: str) -> Dict[str, str]:
        """
        Read every field of the KV v2 secret at `path` (relative to the prefix).

        Raises:
            PermissionError: Path not accessible or doesn't exist
        """
        full_path = self.full_path(path)
        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path, raise_on_deleted_version=True
            )
        except InvalidPath:
            logger.error("Secret path not found: %s", full_path)
            raise PermissionError(f"Secret path '{full_path}' not found in Vault")
        except (Unauthorized, Forbidden) as e:
            logger.error("Access denied to secret %s: %s", full_path, e)
            raise PermissionError(f"Access denied to secret '{full_path}': {e}")
        return response["data"]["data"]

    def get_secret(self, path: str, field: str) -> str:
        """
        Read one field.

        Raises:
            PermissionError: Path not accessible or doesn't exist
            KeyError: Field not found in secret
        """
        data = self.read_secret(path)
        if field not in data:
            raise KeyError(
                f"Field '{field}' not found in secret '{self.full_path(path)}'. "
                f"Available: {', '.join(data)}"
            )
        return data[field]


def get_vault_client() -> VaultClient:
    global _vault_client_instance
    if _vault_client_instance is None:
        _vault_client_instance = VaultClient()
    return _vault_client_instance


def reset_secret_cache() -> None:
    """Forget the shared client and every cached secret."""
    global _vault_client_instance
    with _cache_lock:
        _vault_client_instance = None
        _secret_cache.clear()


def _cached_field(path: str, field: str) -> str:
    with _cache_lock:
        if path not in _secret_cache:
            _secret_cache[path] = get_vault_client().read_secret(path)
        data = _secret_cache[path]
    if field not in data:
        raise KeyError(f"Field '{field}' not found in secret '{path}'")
    return data[field]


def get_database_url() -> str:
    """PostgreSQL connection URL for the application role (RLS enforced)."""
    return _cached_field("database", "url")


def get_database_admin_url() -> str:
    """PostgreSQL URL for the BYPASSRLS role. Tests and migrations only."""
    return _cached_field("database", "admin_url")


def get_valkey_url() -> str:
    """Valkey (Redis) connection URL."""
    return _cached_field("valkey", "url")
