"""End-to-end tests for the reconciler CLI."""

import pytest

from reconciler.cli.main import cli

from conftest import ADMIN, APPROVER, PREPARER, TENANT


@pytest.fixture
def run_cli(cli_runner, temp_db):
    """Invoke the CLI against the temporary database as the given user."""

    def _run(*args, user=ADMIN, tenant=TENANT):
        base = ["--db-path", temp_db.database_path]
        if tenant:
            base += ["--tenant", tenant]
        if user:
            base += ["--user", user]
        return cli_runner.invoke(cli, [*base, *args])

    return _run


@pytest.fixture
def reconciled(run_cli, fixtures_dir):
    """Bank and ledger imported and matched once by the admin."""
    steps = [
        ["role", "assign", ADMIN, "admin"],
        ["schema", "create", "bank-csv"],
        ["schema", "map", "bank-csv", "Date", "date"],
        ["schema", "map", "bank-csv", "Description", "description"],
        ["schema", "map", "bank-csv", "Amount", "amount"],
        ["schema", "map", "bank-csv", "Reference", "reference"],
        ["schema", "map", "bank-csv", "Currency", "currency"],
        ["datasource", "create", "Bank Statement", "--schema", "bank-csv"],
        ["datasource", "create", "General Ledger"],
        ["import", str(fixtures_dir / "bank_statement.csv"), "--data-source", "Bank Statement"],
        [
            "import",
            str(fixtures_dir / "general_ledger.csv"),
            "--data-source",
            "General Ledger",
            "--map",
            "date=1",
            "--map",
            "description=2",
            "--map",
            "amount=3",
            "--map",
            "reference=4",
        ],
        ["rule", "create", "Amount and date", "--amount", "--date", "--tolerance", "2"],
        [
            "matchset",
            "create",
            "Bank vs Ledger",
            "--rule",
            "Amount and date",
            "--source",
            "Bank Statement",
            "--source",
            "General Ledger",
        ],
    ]
    for step in steps:
        result = run_cli(*step)
        assert result.exit_code == 0, f"{step}: {result.output}"
    return run_cli("matchset", "run", "Bank vs Ledger")


def test_full_workflow(run_cli, reconciled):
    """Import two sources, run matching and approve a match."""
    assert reconciled.exit_code == 0, reconciled.output
    assert "Run 1 completed:" in reconciled.output
    assert "Groups: 2" in reconciled.output
    assert "Matched transactions: 4" in reconciled.output
    assert "Unmatched transactions: 2" in reconciled.output

    result = run_cli("matchset", "status", "Bank vs Ledger")
    assert result.exit_code == 0
    assert "Status: Completed" in result.output
    assert "Data sources: Bank Statement, General Ledger" in result.output
    assert "Total transactions: 6" in result.output
    assert "Matched: 4" in result.output
    assert "Unmatched: 2" in result.output

    result = run_cli("matchset", "unmatched", "Bank vs Ledger")
    assert result.output.count("Transaction ") == 2

    result = run_cli("match", "list", "--status", "Pending")
    assert "of 2" in result.output

    result = run_cli("match", "approve", "1")
    assert result.exit_code == 0
    assert "Approved match 1" in result.output

    result = run_cli("match", "show", "1")
    assert "Approved" in result.output
    assert result.output.count("  ID:") == 2


def test_import_summary(run_cli, fixtures_dir):
    run_cli("role", "assign", ADMIN, "admin")
    run_cli("datasource", "create", "Bank")

    result = run_cli(
        "import",
        str(fixtures_dir / "partial_failure.csv"),
        "--data-source",
        "Bank",
        "--map",
        "date=1",
        "--map",
        "description=2",
        "--map",
        "amount=3",
        "--map",
        "reference=4",
    )

    assert result.exit_code == 0, result.output
    assert "Import 1 completed:" in result.output
    assert "Rows: 5" in result.output
    assert "Imported: 3" in result.output
    assert "Errors: 2" in result.output

    result = run_cli("imports", "errors", "1")
    assert "Row 4:" in result.output
    assert "Row 5:" in result.output


def test_suggest_mapping(run_cli, fixtures_dir):
    result = run_cli("import", str(fixtures_dir / "bank_statement.csv"), "--suggest")

    assert result.exit_code == 0
    assert "date=1" in result.output
    assert "amount=3" in result.output


def test_reject_then_rerun(run_cli, reconciled):
    run_cli("role", "assign", APPROVER, "approver")

    result = run_cli("match", "reject", "1", "--reason", "wrong vendor", user=APPROVER)
    assert result.exit_code == 0, result.output

    result = run_cli("matchset", "run", "Bank vs Ledger")
    assert "Groups: 1" in result.output


def test_preparer_cannot_approve(run_cli, reconciled):
    run_cli("role", "assign", PREPARER, "preparer")

    result = run_cli("match", "approve", "1", user=PREPARER)

    assert result.exit_code == 1
    assert "Error:" in result.output
    assert "approve:matches" in result.output


def test_preparer_cannot_create_rules(run_cli):
    run_cli("role", "assign", PREPARER, "preparer")

    result = run_cli("rule", "create", "Exact", "--amount", user=PREPARER)

    assert result.exit_code == 1
    assert "manage:rules" in result.output


def test_run_needs_two_sources(run_cli):
    run_cli("role", "assign", ADMIN, "admin")
    run_cli("datasource", "create", "Bank")
    run_cli("rule", "create", "Exact", "--amount")
    run_cli("matchset", "create", "Lonely", "--rule", "Exact", "--source", "Bank")

    result = run_cli("matchset", "run", "Lonely")

    assert result.exit_code == 1
    assert "at least two data sources" in result.output


def test_unknown_match_set(run_cli):
    result = run_cli("matchset", "run", "Nope")

    assert result.exit_code == 1
    assert "Match set 'Nope' not found" in result.output


def test_missing_tenant(run_cli):
    result = run_cli("datasource", "list", tenant=None)

    assert result.exit_code == 1
    assert "No tenant given" in result.output


def test_invalid_map_option(run_cli, fixtures_dir):
    run_cli("role", "assign", ADMIN, "admin")
    run_cli("datasource", "create", "Bank")

    result = run_cli(
        "import", str(fixtures_dir / "bank_statement.csv"), "--data-source", "Bank", "--map", "date=0"
    )

    assert result.exit_code == 1
    assert "Invalid mapping" in result.output


def test_role_list(run_cli):
    run_cli("role", "assign", APPROVER, "approver")

    result = run_cli("role", "list", APPROVER)

    assert "approver: approve:matches, view:matchset" in result.output
