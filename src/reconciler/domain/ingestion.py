"""Ingestion domain service.

Turns tabular source rows into canonical transactions. A bad row never
aborts an import: it is kept as a raw row carrying its error message and
the import carries on.
"""

import csv
import logging
import threading
from collections import defaultdict
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Sequence

from reconciler.database.base import Database
from reconciler.domain.authorization import (
    Authorizer,
    Permission,
    RoleAuthorizer,
    require_permission,
)
from reconciler.domain.entities import (
    CANONICAL_FIELDS,
    REQUIRED_CANONICAL_FIELDS,
    DataSource,
    ImportRecord,
    ImportStatus,
    ParsedTransaction,
    RawTransaction,
    RowResult,
    Transaction,
    TransactionStatus,
)
from reconciler.domain.errors import NotFoundError, ValidationError, missing_required_mappings, not_found
from reconciler.domain.schema import DEFAULT_FILE_TYPE
from reconciler.utils.amount_parser import parse_amount
from reconciler.utils.column_mapping import suggest_column_mapping
from reconciler.utils.date_parser import parse_date

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "USD"
BATCH_SIZE = 500
SNIFF_SAMPLE_SIZE = 4096

# Imports into one data source run one at a time; different sources do not
# block each other
_registry_lock = threading.Lock()
_data_source_locks: dict[int, threading.Lock] = defaultdict(threading.Lock)


def data_source_lock(data_source_id: int) -> threading.Lock:
    with _registry_lock:
        return _data_source_locks[data_source_id]


def _apply_text_transformation(value: str, transformation: Optional[str]) -> str:
    if transformation == "upper":
        return value.upper()
    if transformation == "lower":
        return value.lower()
    return value


def _apply_amount_transformation(amount: Decimal, transformation: Optional[str]) -> Decimal:
    if transformation == "negate":
        return -amount
    if transformation == "abs":
        return abs(amount)
    return amount


def _row_data(row: Sequence[str], headers: Optional[Sequence[str]]) -> dict[str, Any]:
    data = {}
    for index, cell in enumerate(row):
        key = None
        if headers is not None and index < len(headers) and headers[index]:
            key = headers[index]
        data[key or f"column_{index + 1}"] = cell
    return data


def _validate_column_mapping(column_mapping: dict[str, int]) -> None:
    unknown = [f for f in column_mapping if f not in CANONICAL_FIELDS]
    if unknown:
        raise ValidationError(f"Unknown fields in column mapping: {', '.join(sorted(unknown))}")
    missing = [f for f in REQUIRED_CANONICAL_FIELDS if f not in column_mapping]
    if missing:
        raise ValidationError(missing_required_mappings(missing))
    for field_name, index in column_mapping.items():
        if not isinstance(index, int) or index < 0:
            raise ValidationError(f"Column index for '{field_name}' must be a non-negative integer")


def normalize_rows(
    rows: Iterable[Sequence[str]],
    column_mapping: dict[str, int],
    date_format: Optional[str] = None,
    number_format: Optional[str] = None,
    default_currency: str = DEFAULT_CURRENCY,
    headers: Optional[Sequence[str]] = None,
    transformations: Optional[dict[str, str]] = None,
    first_row_number: int = 2,
) -> Iterator[RowResult]:
    """Normalize source rows into canonical transactions.

    The mapping is checked up front: a mapping without the required fields
    raises ValidationError before any row is read. Rows are then processed
    lazily, one RowResult per row.

    Args:
        rows: Data rows as lists of cell strings (header row excluded)
        column_mapping: Canonical field name to column index
        date_format: strptime pattern; flexible parsing when None
        number_format: "1,234.56" (default) or "1.234,56"
        default_currency: Currency when no currency column is mapped or the cell is empty
        headers: Header row, used to key the raw row payload
        transformations: Canonical field name to transformation name
        first_row_number: Row number reported for the first data row

    Returns:
        Iterator of RowResult
    """
    _validate_column_mapping(column_mapping)
    return _normalize(
        rows,
        dict(column_mapping),
        date_format,
        number_format,
        default_currency,
        headers,
        dict(transformations or {}),
        first_row_number,
    )


def _normalize(
    rows: Iterable[Sequence[str]],
    column_mapping: dict[str, int],
    date_format: Optional[str],
    number_format: Optional[str],
    default_currency: str,
    headers: Optional[Sequence[str]],
    transformations: dict[str, str],
    first_row_number: int,
) -> Iterator[RowResult]:
    for row_number, row in enumerate(rows, start=first_row_number):
        data = _row_data(row, headers)
        try:
            parsed = _parse_row(
                row, column_mapping, date_format, number_format, default_currency, transformations
            )
        except ValueError as e:
            yield RowResult(row_number=row_number, data=data, error=str(e))
            continue
        yield RowResult(row_number=row_number, data=data, transaction=parsed)


def _parse_row(
    row: Sequence[str],
    column_mapping: dict[str, int],
    date_format: Optional[str],
    number_format: Optional[str],
    default_currency: str,
    transformations: dict[str, str],
) -> ParsedTransaction:
    def cell(field_name: str) -> Optional[str]:
        index = column_mapping.get(field_name)
        if index is None:
            return None
        if index >= len(row):
            raise ValueError(f"Column {index + 1} for {field_name} is missing")
        value = (row[index] or "").strip()
        return _apply_text_transformation(value, transformations.get(field_name))

    date_str = cell("date")
    if not date_str:
        raise ValueError("Missing date")
    transaction_date = parse_date(date_str, date_format)

    amount_str = cell("amount")
    if not amount_str:
        raise ValueError("Missing amount")
    amount = parse_amount(amount_str, number_format)
    amount = _apply_amount_transformation(amount, transformations.get("amount"))

    currency = (cell("currency") or default_currency).upper()
    if len(currency) != 3 or not currency.isalpha():
        raise ValueError(f"Invalid currency '{currency}'")

    # An unusable post date is not worth failing the row over
    post_date = transaction_date
    post_date_str = cell("postDate")
    if post_date_str:
        try:
            post_date = parse_date(post_date_str, date_format)
        except ValueError:
            post_date = transaction_date

    return ParsedTransaction(
        transaction_date=transaction_date,
        post_date=post_date,
        description=cell("description") or None,
        reference=cell("reference") or None,
        amount=amount,
        currency=currency,
    )


class IngestionService:
    """Service for importing source files into a data source."""

    def __init__(self, db: Database, authorizer: Optional[Authorizer] = None):
        """Initialize ingestion service.

        Args:
            db: Database instance
            authorizer: Permission source; defaults to role assignments in db
        """
        self.db = db
        self.authorizer = authorizer or RoleAuthorizer(db)

    def suggest_column_mapping(self, headers: Sequence[str]) -> dict[str, int]:
        """Guess a column mapping from header names, for a user to confirm."""
        return suggest_column_mapping(headers)

    def read_headers(self, file_path: str) -> list[str]:
        """Read the header row of a CSV file."""
        with open(file_path, "r", encoding="utf-8-sig", newline="") as f:
            sample = f.read(SNIFF_SAMPLE_SIZE)
            f.seek(0)
            reader = csv.reader(f, delimiter=self._sniff_delimiter(sample))
            return next(reader, [])

    @staticmethod
    def _sniff_delimiter(sample: str) -> str:
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            return ","

    def _get_data_source(self, data_source_id: int, tenant_id: str) -> DataSource:
        source = self.db.get_data_source(data_source_id, tenant_id)
        if source is None:
            raise NotFoundError(not_found("Data source", data_source_id))
        return source

    def resolve_column_mapping(
        self, source: DataSource, headers: Sequence[str]
    ) -> tuple[dict[str, int], dict[str, str]]:
        """Derive a column mapping from header names.

        Schema mappings are looked up first; the data source definition's
        default mappings fill the remaining fields.

        Returns:
            Tuple of (field to column index, field to transformation)
        """
        positions = {}
        for index, header in enumerate(headers):
            key = (header or "").strip().lower()
            if key and key not in positions:
                positions[key] = index

        column_mapping: dict[str, int] = {}
        transformations: dict[str, str] = {}
        if source.schema_id is not None:
            for mapping in self.db.get_schema_mappings(source.schema_id):
                index = positions.get(mapping.source_field_name.strip().lower())
                if index is None or mapping.target_field_name in column_mapping:
                    continue
                column_mapping[mapping.target_field_name] = index
                if mapping.transformation:
                    transformations[mapping.target_field_name] = mapping.transformation

        definition = source.schema_definition
        if definition is not None:
            for target, column_name in definition.default_mappings.items():
                index = positions.get(column_name.strip().lower())
                if index is not None and target not in column_mapping:
                    column_mapping[target] = index

        return column_mapping, transformations

    def import_rows(
        self,
        data_source_id: int,
        tenant_id: str,
        user_id: str,
        rows: Iterable[Sequence[str]],
        headers: Optional[Sequence[str]] = None,
        column_mapping: Optional[dict[str, int]] = None,
        date_format: Optional[str] = None,
        number_format: Optional[str] = None,
        default_currency: str = DEFAULT_CURRENCY,
        transformations: Optional[dict[str, str]] = None,
        file_name: str = "rows",
        file_size: int = 0,
        first_row_number: int = 2,
    ) -> ImportRecord:
        """Import rows into a data source.

        Args:
            data_source_id: Target data source
            tenant_id: Owning tenant
            user_id: Acting user, needs upload:datasource
            rows: Data rows as lists of cell strings
            headers: Header row; used to resolve the mapping when none is given
            column_mapping: Canonical field name to column index

        Returns:
            The finished import record

        Raises:
            PermissionDeniedError: If the user may not upload
            NotFoundError: If the data source does not exist in the tenant
            ValidationError: If no complete column mapping can be established
        """
        require_permission(self.authorizer, user_id, Permission.UPLOAD_DATASOURCE, tenant_id)
        source = self._get_data_source(data_source_id, tenant_id)

        if column_mapping is None:
            column_mapping, resolved = self.resolve_column_mapping(source, headers or [])
            transformations = transformations or resolved
        if date_format is None and source.schema_definition is not None:
            date_format = source.schema_definition.date_format

        results = normalize_rows(
            rows,
            column_mapping,
            date_format=date_format,
            number_format=number_format,
            default_currency=default_currency,
            headers=headers,
            transformations=transformations,
            first_row_number=first_row_number,
        )

        with data_source_lock(data_source_id):
            import_id = self.db.create_import_record(
                tenant_id=tenant_id,
                data_source_id=data_source_id,
                file_name=file_name,
                file_size=file_size,
                imported_by=user_id,
            )
            # Counts cover saved rows only
            success_count = 0
            error_count = 0
            error_message = None
            batch: list[RowResult] = []
            try:
                try:
                    for result in results:
                        batch.append(result)
                        if len(batch) >= BATCH_SIZE:
                            saved = self._save_batch(import_id, tenant_id, data_source_id, user_id, batch)
                            success_count += saved
                            error_count += len(batch) - saved
                            batch = []
                except (csv.Error, UnicodeDecodeError) as e:
                    error_message = f"Could not read file: {e}"
                    logger.warning("Import %s stopped reading: %s", import_id, e)
                if batch:
                    saved = self._save_batch(import_id, tenant_id, data_source_id, user_id, batch)
                    success_count += saved
                    error_count += len(batch) - saved
            except Exception as e:
                self.db.finish_import(
                    import_id,
                    status=ImportStatus.FAILED,
                    row_count=success_count + error_count,
                    success_count=success_count,
                    error_count=error_count,
                    error_message=f"Import failed: {e}",
                )
                logger.exception(
                    "Import %s into data source %s failed after %d saved rows",
                    import_id,
                    data_source_id,
                    success_count + error_count,
                )
                raise

            if success_count == 0 and error_message is None:
                error_message = "No rows imported" if error_count else "File has no data rows"
            status = ImportStatus.COMPLETED if success_count > 0 else ImportStatus.FAILED
            self.db.finish_import(
                import_id,
                status=status,
                row_count=success_count + error_count,
                success_count=success_count,
                error_count=error_count,
                error_message=error_message,
            )

        logger.info(
            "Import %s into data source %s: %s (%d ok, %d failed)",
            import_id,
            data_source_id,
            status.value,
            success_count,
            error_count,
        )
        return self.db.get_import(import_id, tenant_id)

    def _save_batch(
        self, import_id: int, tenant_id: str, data_source_id: int, user_id: str, batch: list[RowResult]
    ) -> int:
        """Persist a batch and return how many of its rows parsed."""
        self.db.save_import_rows(
            import_id=import_id,
            tenant_id=tenant_id,
            data_source_id=data_source_id,
            created_by=user_id,
            rows=batch,
        )
        return sum(1 for result in batch if result.ok)

    def import_file(
        self,
        file_path: str,
        data_source_id: int,
        tenant_id: str,
        user_id: str,
        column_mapping: Optional[dict[str, int]] = None,
    ) -> ImportRecord:
        """Import a CSV file into a data source.

        Parsing options come from the CSV parsing config of the data source's
        schema; without one the delimiter is sniffed and a header row is
        expected.

        Raises:
            FileNotFoundError: If the file does not exist
        """
        require_permission(self.authorizer, user_id, Permission.UPLOAD_DATASOURCE, tenant_id)
        source = self._get_data_source(data_source_id, tenant_id)
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        config = None
        if source.schema_id is not None:
            config = self.db.get_parsing_config(source.schema_id, DEFAULT_FILE_TYPE)

        file_size = path.stat().st_size
        with open(path, "r", encoding="utf-8-sig", newline="") as f:
            try:
                sample = f.read(SNIFF_SAMPLE_SIZE)
            except UnicodeDecodeError as e:
                return self._record_unreadable(source, tenant_id, user_id, path.name, file_size, e)
            f.seek(0)

            delimiter = config.delimiter if config and config.delimiter else self._sniff_delimiter(sample)
            quote_char = config.quote_char if config and config.quote_char else '"'
            has_header_row = config.has_header_row if config else True
            reader = csv.reader(f, delimiter=delimiter, quotechar=quote_char)

            headers = None
            if has_header_row:
                try:
                    headers = next(reader, None)
                except csv.Error as e:
                    return self._record_unreadable(source, tenant_id, user_id, path.name, file_size, e)
                if headers is None:
                    return self._record_unreadable(
                        source, tenant_id, user_id, path.name, file_size, "file is empty"
                    )

            return self.import_rows(
                data_source_id=data_source_id,
                tenant_id=tenant_id,
                user_id=user_id,
                rows=reader,
                headers=headers,
                column_mapping=column_mapping,
                date_format=config.date_format if config else None,
                number_format=config.number_format if config else None,
                file_name=path.name,
                file_size=file_size,
                first_row_number=2 if has_header_row else 1,
            )

    def _record_unreadable(
        self, source: DataSource, tenant_id: str, user_id: str, file_name: str, file_size: int, reason
    ) -> ImportRecord:
        with data_source_lock(source.id):
            import_id = self.db.create_import_record(
                tenant_id=tenant_id,
                data_source_id=source.id,
                file_name=file_name,
                file_size=file_size,
                imported_by=user_id,
            )
            self.db.finish_import(
                import_id,
                status=ImportStatus.FAILED,
                row_count=0,
                success_count=0,
                error_count=0,
                error_message=f"Could not read file: {reason}",
            )
        logger.warning("Import %s of %s failed: %s", import_id, file_name, reason)
        return self.db.get_import(import_id, tenant_id)

    def get_import(self, import_id: int, tenant_id: str) -> ImportRecord:
        record = self.db.get_import(import_id, tenant_id)
        if record is None:
            raise NotFoundError(not_found("Import", import_id))
        return record

    def list_imports(self, tenant_id: str, data_source_id: Optional[int] = None) -> list[ImportRecord]:
        return self.db.list_imports(tenant_id, data_source_id=data_source_id)

    def list_raw_transactions(
        self, import_id: int, tenant_id: str, errors_only: bool = False
    ) -> list[RawTransaction]:
        self.get_import(import_id, tenant_id)
        return self.db.list_raw_transactions(import_id, errors_only=errors_only)

    def list_transactions(
        self, data_source_id: int, tenant_id: str, status: Optional[TransactionStatus] = None
    ) -> list[Transaction]:
        self._get_data_source(data_source_id, tenant_id)
        return self.db.list_transactions(tenant_id, [data_source_id], status=status)

    def delete_import(self, import_id: int, tenant_id: str, user_id: str) -> None:
        """Delete an import and its raw rows. Imported transactions stay."""
        require_permission(self.authorizer, user_id, Permission.UPLOAD_DATASOURCE, tenant_id)
        record = self.get_import(import_id, tenant_id)
        with data_source_lock(record.data_source_id):
            self.db.delete_import(import_id)
        logger.info("Deleted import %s", import_id)
