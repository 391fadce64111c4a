"""Abstract database interface.

Every tenant-owned lookup takes the tenant ID and returns None (or nothing)
for rows belonging to another tenant.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence
from datetime import date
from decimal import Decimal

# Import entities directly, services are loaded lazily by reconciler.domain
from reconciler.domain.entities import (
    DataSource,
    DataSourceSchema,
    SchemaDefinition,
    SchemaField,
    SchemaMapping,
    FileParsingConfig,
    ImportRecord,
    ImportStatus,
    RawTransaction,
    RowResult,
    Transaction,
    TransactionStatus,
    MatchRule,
    MatchSet,
    MatchRun,
    MatchStatus,
    MatchType,
    RunStatus,
    Role,
    TransactionMatch,
    UnmatchedTransaction,
)


class Database(ABC):
    """Abstract database interface for reconciler."""

    @abstractmethod
    def connect(self) -> None:
        """Connect to the database."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the database."""
        pass

    @abstractmethod
    def initialize_schema(self) -> None:
        """Initialize database schema (create tables)."""
        pass

    # Role operations
    @abstractmethod
    def add_user_role(self, user_id: str, tenant_id: str, role: Role) -> None:
        """Grant a role; granting an existing role is a no-op."""
        pass

    @abstractmethod
    def get_user_roles(self, user_id: str, tenant_id: str) -> set[Role]:
        """Get the roles a user holds within a tenant."""
        pass

    # Schema registry operations
    @abstractmethod
    def create_schema(
        self, tenant_id: str, name: str, description: Optional[str], created_by: Optional[str]
    ) -> int:
        """Create a data source schema. Returns schema ID."""
        pass

    @abstractmethod
    def get_schema(self, schema_id: int, tenant_id: str) -> Optional[DataSourceSchema]:
        pass

    @abstractmethod
    def get_schema_by_name(self, tenant_id: str, name: str) -> Optional[DataSourceSchema]:
        pass

    @abstractmethod
    def list_schemas(self, tenant_id: str) -> list[DataSourceSchema]:
        pass

    @abstractmethod
    def add_schema_field(
        self,
        schema_id: int,
        name: str,
        field_type: str,
        required: bool = False,
        display_name: Optional[str] = None,
        default_value: Optional[str] = None,
    ) -> int:
        """Append a field to a schema. Returns field ID."""
        pass

    @abstractmethod
    def list_schema_fields(self, schema_id: int) -> list[SchemaField]:
        """List schema fields in order."""
        pass

    @abstractmethod
    def add_schema_mapping(
        self,
        schema_id: int,
        source_field_name: str,
        target_field_name: str,
        transformation: Optional[str] = None,
    ) -> int:
        """Add a column mapping. Raises ConflictError for a duplicate source field."""
        pass

    @abstractmethod
    def get_schema_mappings(self, schema_id: int) -> list[SchemaMapping]:
        pass

    @abstractmethod
    def delete_schema_mapping(self, mapping_id: int, schema_id: int) -> bool:
        """Delete a mapping. Returns False if it does not belong to the schema."""
        pass

    @abstractmethod
    def create_parsing_config(self, schema_id: int, file_type: str, **options: Any) -> int:
        """Create a parsing config. Raises ConflictError when the file type has one."""
        pass

    @abstractmethod
    def get_parsing_config(self, schema_id: int, file_type: str) -> Optional[FileParsingConfig]:
        pass

    @abstractmethod
    def update_parsing_config(self, config_id: int, **options: Any) -> None:
        pass

    # Data source operations
    @abstractmethod
    def create_data_source(
        self,
        tenant_id: str,
        name: str,
        description: Optional[str] = None,
        schema_id: Optional[int] = None,
        schema_definition: Optional[SchemaDefinition] = None,
    ) -> int:
        """Create a data source. Returns data source ID."""
        pass

    @abstractmethod
    def get_data_source(self, data_source_id: int, tenant_id: str) -> Optional[DataSource]:
        pass

    @abstractmethod
    def get_data_source_by_name(self, tenant_id: str, name: str) -> Optional[DataSource]:
        pass

    @abstractmethod
    def list_data_sources(self, tenant_id: str) -> list[DataSource]:
        pass

    # Import operations
    @abstractmethod
    def create_import_record(
        self, tenant_id: str, data_source_id: int, file_name: str, file_size: int, imported_by: str
    ) -> int:
        """Create an import record in Processing state. Returns import ID."""
        pass

    @abstractmethod
    def save_import_rows(
        self, import_id: int, tenant_id: str, data_source_id: int, created_by: str, rows: Sequence[RowResult]
    ) -> None:
        """Persist a batch of normalized rows in one commit.

        Every row becomes a RawTransaction; successful rows also become
        Unmatched Transactions linked to the import.
        """
        pass

    @abstractmethod
    def finish_import(
        self,
        import_id: int,
        status: ImportStatus,
        row_count: int,
        success_count: int,
        error_count: int,
        error_message: Optional[str] = None,
    ) -> None:
        pass

    @abstractmethod
    def get_import(self, import_id: int, tenant_id: str) -> Optional[ImportRecord]:
        pass

    @abstractmethod
    def list_imports(self, tenant_id: str, data_source_id: Optional[int] = None) -> list[ImportRecord]:
        """List imports, newest first."""
        pass

    @abstractmethod
    def list_raw_transactions(self, import_id: int, errors_only: bool = False) -> list[RawTransaction]:
        """List raw rows of an import in row order."""
        pass

    @abstractmethod
    def delete_import(self, import_id: int) -> None:
        """Delete an import and its raw rows; its transactions are kept."""
        pass

    # Transaction operations
    @abstractmethod
    def create_transaction(
        self,
        tenant_id: str,
        data_source_id: int,
        transaction_date: date,
        amount: Decimal,
        currency: str = "USD",
        description: Optional[str] = None,
        reference: Optional[str] = None,
        post_date: Optional[date] = None,
        import_id: Optional[int] = None,
        created_by: Optional[str] = None,
    ) -> int:
        """Create an Unmatched transaction. Returns transaction ID."""
        pass

    @abstractmethod
    def get_transaction(self, transaction_id: int, tenant_id: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    def get_transactions(self, transaction_ids: Sequence[int], tenant_id: str) -> list[Transaction]:
        """Get the tenant's transactions among the given IDs."""
        pass

    @abstractmethod
    def list_transactions(
        self,
        tenant_id: str,
        data_source_ids: Optional[Sequence[int]] = None,
        status: Optional[TransactionStatus] = None,
    ) -> list[Transaction]:
        """List transactions ordered by transaction date, then ID."""
        pass

    @abstractmethod
    def count_transactions(
        self,
        tenant_id: str,
        data_source_ids: Sequence[int],
        status: Optional[TransactionStatus] = None,
    ) -> int:
        pass

    # Match rule operations
    @abstractmethod
    def create_match_rule(
        self,
        tenant_id: str,
        name: str,
        match_by_amount: bool,
        match_by_date: bool,
        date_tolerance_days: int,
        match_by_reference: bool,
        active: bool = True,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> int:
        pass

    @abstractmethod
    def get_match_rule(self, rule_id: int, tenant_id: str) -> Optional[MatchRule]:
        pass

    @abstractmethod
    def list_match_rules(self, tenant_id: str) -> list[MatchRule]:
        pass

    @abstractmethod
    def update_match_rule(self, rule_id: int, **fields: Any) -> None:
        pass

    # Match set operations
    @abstractmethod
    def create_match_set(
        self,
        tenant_id: str,
        name: str,
        rule_id: int,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> int:
        pass

    @abstractmethod
    def get_match_set(self, match_set_id: int, tenant_id: str) -> Optional[MatchSet]:
        pass

    @abstractmethod
    def list_match_sets(self, tenant_id: str) -> list[MatchSet]:
        pass

    @abstractmethod
    def add_match_set_data_source(self, match_set_id: int, data_source_id: int, tenant_id: str) -> None:
        """Attach a data source. Raises ConflictError when already attached."""
        pass

    @abstractmethod
    def remove_match_set_data_source(self, match_set_id: int, data_source_id: int) -> bool:
        pass

    @abstractmethod
    def get_match_set_data_sources(self, match_set_id: int, tenant_id: str) -> list[DataSource]:
        """Data sources in attachment order."""
        pass

    # Run operations
    @abstractmethod
    def begin_match_run(self, match_set_id: int, tenant_id: str, started_by: str) -> Optional[MatchRun]:
        """Atomically move a match set to Running and open a run.

        Returns None, without side effects, if the set is already Running.
        """
        pass

    @abstractmethod
    def finish_match_run(
        self,
        run_id: int,
        status: RunStatus,
        group_count: int = 0,
        matched_count: int = 0,
        unmatched_count: int = 0,
        error_message: Optional[str] = None,
    ) -> bool:
        """Close a Running run and release the match set's run lock.

        Returns False, changing nothing, if the run is no longer Running.
        """
        pass

    @abstractmethod
    def get_match_run(self, run_id: int, tenant_id: str) -> Optional[MatchRun]:
        pass

    @abstractmethod
    def list_match_runs(self, match_set_id: int, tenant_id: str) -> list[MatchRun]:
        """List runs, newest first."""
        pass

    @abstractmethod
    def fail_match_run(self, run_id: int, tenant_id: str, error_message: str) -> Optional[int]:
        """Mark a Running run Failed and undo its pending matches in one commit.

        Returns the number of matches removed, or None, changing nothing, if
        the run is no longer Running.
        """
        pass

    # Match operations
    @abstractmethod
    def create_match_group(
        self,
        tenant_id: str,
        match_set_id: int,
        transaction_ids: Sequence[int],
        match_type: MatchType,
        matched_by: str,
        match_rule_id: Optional[int] = None,
        run_id: Optional[int] = None,
    ) -> TransactionMatch:
        """Write a Pending match and its members in one commit.

        Raises ConflictError, leaving nothing written, when any transaction is
        no longer Unmatched.
        With a run_id, raises RunAbortedError when that run is no longer Running.
        """
        pass

    @abstractmethod
    def get_match(self, match_id: int, tenant_id: str) -> Optional[TransactionMatch]:
        pass

    @abstractmethod
    def get_match_transactions(self, match_id: int, tenant_id: str) -> list[Transaction]:
        pass

    @abstractmethod
    def approve_match(self, match_id: int, tenant_id: str, approved_by: str) -> TransactionMatch:
        """Pending -> Approved. Raises ConflictError if not Pending."""
        pass

    @abstractmethod
    def reject_match(
        self, match_id: int, tenant_id: str, rejected_by: str, reason: str
    ) -> TransactionMatch:
        """Pending -> Rejected and unwind the group in one commit.

        Raises ConflictError if not Pending.
        """
        pass

    @abstractmethod
    def search_matches(
        self,
        tenant_id: str,
        status: Optional[MatchStatus] = None,
        match_type: Optional[MatchType] = None,
        matched_by: Optional[str] = None,
        approved_by: Optional[str] = None,
        match_set_id: Optional[int] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[TransactionMatch], int]:
        """Search matches, newest first. Returns (page, total)."""
        pass

    @abstractmethod
    def count_matched_transactions(self, match_set_id: int, tenant_id: str) -> int:
        pass

    @abstractmethod
    def replace_unmatched_transactions(
        self, match_set_id: int, tenant_id: str, run_id: Optional[int], entries: Sequence[tuple[int, str]]
    ) -> None:
        """Replace a match set's unmatched records with (transaction_id, reason) entries.

        With a run_id, raises RunAbortedError when that run is no longer Running.
        """
        pass

    @abstractmethod
    def list_unmatched_transactions(self, match_set_id: int, tenant_id: str) -> list[UnmatchedTransaction]:
        pass
