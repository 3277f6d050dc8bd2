# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    get_vault_client,
    reset_secret_cache,
    get_database_url,
    get_database_admin_url,
    get_valkey_url,
)
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
