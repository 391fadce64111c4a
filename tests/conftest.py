"""Shared pytest fixtures for reconciler tests."""

import tempfile
import os
from datetime import date
from decimal import Decimal
from pathlib import Path
import pytest

from reconciler.database.factories import create_sqlite_database
from reconciler.domain.approval import ApprovalService
from reconciler.domain.authorization import RoleAuthorizer
from reconciler.domain.entities import Role
from reconciler.domain.ingestion import IngestionService
from reconciler.domain.matching import MatchingService
from reconciler.domain.rules import RuleService
from reconciler.domain.schema import SchemaService

TENANT = "acme"
OTHER_TENANT = "globex"
PREPARER = "pat"
APPROVER = "alex"
ADMIN = "root"


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    db = create_sqlite_database(database_path=db_path)
    # Store the path for tests that need it
    db.database_path = db_path
    db.connect()
    db.initialize_schema()

    yield db

    db.disconnect()
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def tenant_id():
    return TENANT


@pytest.fixture
def authorizer(temp_db):
    """Role-backed authorizer with a preparer, an approver and an admin."""
    authorizer = RoleAuthorizer(temp_db)
    authorizer.assign_role(PREPARER, TENANT, Role.PREPARER)
    authorizer.assign_role(APPROVER, TENANT, Role.APPROVER)
    authorizer.assign_role(ADMIN, TENANT, Role.ADMIN)
    return authorizer


@pytest.fixture
def schema_service(temp_db):
    """Create a SchemaService with a temporary database."""
    return SchemaService(temp_db)


@pytest.fixture
def rule_service(temp_db):
    """Create a RuleService with a temporary database."""
    return RuleService(temp_db)


@pytest.fixture
def ingestion_service(temp_db, authorizer):
    """Create an IngestionService with a temporary database."""
    return IngestionService(temp_db, authorizer=authorizer)


@pytest.fixture
def matching_service(temp_db, authorizer):
    """Create a MatchingService with a temporary database."""
    return MatchingService(temp_db, authorizer=authorizer)


@pytest.fixture
def approval_service(temp_db, authorizer):
    """Create an ApprovalService with a temporary database."""
    return ApprovalService(temp_db, authorizer=authorizer)


@pytest.fixture
def bank_source(schema_service):
    """Create the bank statement data source."""
    data_source_id = schema_service.create_data_source(TENANT, "Bank Statement")
    return schema_service.get_data_source(data_source_id, TENANT)


@pytest.fixture
def ledger_source(schema_service):
    """Create the general ledger data source."""
    data_source_id = schema_service.create_data_source(TENANT, "General Ledger")
    return schema_service.get_data_source(data_source_id, TENANT)


@pytest.fixture
def sample_rule(rule_service):
    """Amount and date (2 days) rule."""
    rule_id = rule_service.create_rule(
        TENANT,
        "Amount and date",
        match_by_amount=True,
        match_by_date=True,
        date_tolerance_days=2,
        match_by_reference=False,
    )
    return rule_service.get_rule(rule_id, TENANT)


@pytest.fixture
def sample_match_set(matching_service, sample_rule, bank_source, ledger_source):
    """Match set over bank and ledger with the sample rule."""
    match_set_id = matching_service.create_match_set(TENANT, "Bank vs Ledger", sample_rule.id)
    matching_service.add_data_source(match_set_id, bank_source.id, TENANT)
    matching_service.add_data_source(match_set_id, ledger_source.id, TENANT)
    return matching_service.get_match_set(match_set_id, TENANT)


@pytest.fixture
def add_transaction(temp_db):
    """Factory creating an Unmatched transaction and returning its ID."""

    def _add(data_source_id, amount, txn_date, reference=None, currency="USD", tenant=TENANT):
        if isinstance(txn_date, str):
            txn_date = date.fromisoformat(txn_date)
        return temp_db.create_transaction(
            tenant_id=tenant,
            data_source_id=data_source_id,
            transaction_date=txn_date,
            amount=Decimal(str(amount)),
            currency=currency,
            description="test",
            reference=reference,
        )

    return _add


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()


@pytest.fixture
def fixtures_dir():
    """Return the path to the test fixtures directory."""
    return Path(__file__).parent / "fixtures"
