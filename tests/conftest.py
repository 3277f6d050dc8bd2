"""Shared test fixtures for the revenue test suite."""

import os
import pytest
from uuid import UUID
from pathlib import Path

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
from clients.vault_client import reset_secret_cache
reset_secret_cache()

from utils.tenant_context import tenant_context, clear_current_tenant_id

SCHEMA_PATH = Path(__file__).parent.parent / "schema" / "revenue.sql"


# =============================================================================
# TEST TENANT CONSTANTS
# =============================================================================

# Primary test tenant - use for single-tenant tests
TEST_TENANT_ID = UUID("00000000-0000-0000-0000-000000000001")

# Secondary test tenant - use for RLS isolation tests
TEST_TENANT_B_ID = UUID("00000000-0000-0000-0000-000000000002")

TEST_OPERATOR_ID = UUID("00000000-0000-0000-0000-0000000000a1")


# =============================================================================
# TENANT CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_tenant_context():
    """Ensure clean tenant context before and after each test."""
    clear_current_tenant_id()
    yield
    clear_current_tenant_id()


@pytest.fixture
def test_tenant_id() -> UUID:
    """The primary test tenant's ID."""
    return TEST_TENANT_ID


@pytest.fixture
def test_tenant_b_id() -> UUID:
    """The secondary test tenant's ID (for isolation tests)."""
    return TEST_TENANT_B_ID


@pytest.fixture
def operator_id() -> UUID:
    return TEST_OPERATOR_ID


@pytest.fixture
def as_test_tenant(test_tenant_id):
    """Run the test inside the primary tenant's context."""
    with tenant_context(test_tenant_id):
        yield test_tenant_id


@pytest.fixture
def as_test_tenant_b(test_tenant_b_id):
    """Run the test inside the secondary tenant's context."""
    with tenant_context(test_tenant_b_id):
        yield test_tenant_b_id


# =============================================================================
# VAULT / DATABASE FIXTURES
# =============================================================================


def _require_vault():
    if not os.getenv("VAULT_ADDR"):
        pytest.skip("Vault not configured (VAULT_ADDR unset)")


@pytest.fixture(scope="session")
def db():
    """Session-scoped PostgresClient (application user, RLS enforced)."""
    _require_vault()
    from clients.postgres_client import PostgresClient
    from clients.vault_client import get_database_url

    client = PostgresClient(get_database_url())
    yield client
    client.close()


@pytest.fixture(scope="session")
def db_admin():
    """Session-scoped admin PostgresClient (bypasses RLS, for setup/teardown)."""
    _require_vault()
    from clients.postgres_client import PostgresClient
    from clients.vault_client import get_database_admin_url

    client = PostgresClient(get_database_admin_url())
    client.execute(SCHEMA_PATH.read_text())
    yield client
    client.close()


@pytest.fixture
def clean_db(db_admin, db):
    """Truncate revenue tables before the test."""
    db_admin.execute("""
        TRUNCATE
            fee_rates, permit_fee_configurations, revenue_invoices,
            operator_account_balances, processed_events
    """)
    yield db


# =============================================================================
# VALKEY FIXTURES
# =============================================================================


@pytest.fixture(scope="session")
def valkey():
    """Session-scoped ValkeyClient."""
    _require_vault()
    from clients.valkey_client import ValkeyClient
    from clients.vault_client import get_valkey_url

    client = ValkeyClient(get_valkey_url())
    yield client
    client.close()
