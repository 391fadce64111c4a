"""Domain model entities for reconciler.

These are pure data classes representing business concepts, independent of
database schema. Every entity carries the tenant it belongs to; services
never hand out an entity resolved for a different tenant.
"""

from dataclasses import dataclass, field
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class TransactionStatus(str, Enum):
    UNMATCHED = "Unmatched"
    MATCHED = "Matched"


class ImportStatus(str, Enum):
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


class MatchStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class MatchType(str, Enum):
    AUTOMATIC = "Automatic"
    MANUAL = "Manual"


class RunStatus(str, Enum):
    """Run-lock state of a match set."""

    IDLE = "Idle"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"


class Role(str, Enum):
    PREPARER = "preparer"
    APPROVER = "approver"
    ADMIN = "admin"


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    TIME = "time"
    OBJECT = "object"
    ARRAY = "array"


# Canonical transaction fields a source column can be mapped to
CANONICAL_FIELDS = ("date", "postDate", "description", "amount", "reference", "currency")
REQUIRED_CANONICAL_FIELDS = ("date", "description", "amount", "reference")


@dataclass(frozen=True)
class SchemaFieldDefinition:
    """Field entry of a data source's inline schema definition."""

    name: str
    type: FieldType = FieldType.STRING
    required: bool = False
    display_name: Optional[str] = None
    format: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class SchemaDefinition:
    """Expected columns of a data source."""

    fields: tuple[SchemaFieldDefinition, ...] = ()
    date_format: Optional[str] = None
    default_mappings: dict[str, str] = field(default_factory=dict)
    required_fields: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "fields": [
                {
                    "name": f.name,
                    "type": f.type.value,
                    "required": f.required,
                    "display_name": f.display_name,
                    "format": f.format,
                    "description": f.description,
                }
                for f in self.fields
            ],
            "date_format": self.date_format,
            "default_mappings": dict(self.default_mappings),
            "required_fields": list(self.required_fields),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SchemaDefinition":
        return cls(
            fields=tuple(
                SchemaFieldDefinition(
                    name=f["name"],
                    type=FieldType(f.get("type", "string")),
                    required=bool(f.get("required", False)),
                    display_name=f.get("display_name"),
                    format=f.get("format"),
                    description=f.get("description"),
                )
                for f in data.get("fields", [])
            ),
            date_format=data.get("date_format"),
            default_mappings=dict(data.get("default_mappings") or {}),
            required_fields=tuple(data.get("required_fields") or ()),
        )


@dataclass(frozen=True)
class DataSource:
    """Named feed of transactions owned by a tenant."""

    id: int
    tenant_id: str
    name: str
    description: Optional[str]
    schema_id: Optional[int]
    schema_definition: Optional[SchemaDefinition]
    created_at: datetime


@dataclass(frozen=True)
class DataSourceSchema:
    id: int
    tenant_id: str
    name: str
    description: Optional[str]
    created_by: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class SchemaField:
    id: int
    schema_id: int
    name: str
    display_name: Optional[str]
    type: FieldType
    required: bool
    default_value: Optional[str]
    order: int


@dataclass(frozen=True)
class SchemaMapping:
    """Maps a raw file column to a canonical transaction field."""

    id: int
    schema_id: int
    source_field_name: str
    target_field_name: str
    transformation: Optional[str]


@dataclass(frozen=True)
class FileParsingConfig:
    id: int
    schema_id: int
    file_type: str
    has_header_row: bool
    delimiter: Optional[str]
    date_format: Optional[str]
    time_format: Optional[str]
    number_format: Optional[str]
    quote_char: Optional[str]


@dataclass(frozen=True)
class ImportRecord:
    """One file upload and its aggregate outcome."""

    id: int
    tenant_id: str
    data_source_id: int
    file_name: str
    file_size: int
    status: ImportStatus
    row_count: int
    success_count: int
    error_count: int
    imported_by: str
    error_message: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class RawTransaction:
    """Original source row, with the reason it failed normalization if it did."""

    id: int
    import_id: int
    data_source_id: int
    row_number: int
    data: dict[str, Any]
    error_message: Optional[str]


@dataclass(frozen=True)
class Transaction:
    """Canonical normalized transaction."""

    id: int
    tenant_id: str
    data_source_id: int
    import_id: Optional[int]
    transaction_date: date
    post_date: date
    description: Optional[str]
    reference: Optional[str]
    amount: Decimal
    currency: str
    status: TransactionStatus
    created_by: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class ParsedTransaction:
    """Canonical values normalized from one source row, not yet persisted."""

    transaction_date: date
    post_date: date
    description: Optional[str]
    reference: Optional[str]
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class RowResult:
    """Outcome of normalizing one source row.

    Exactly one of ``transaction`` and ``error`` is set.
    """

    row_number: int
    data: dict[str, Any]
    transaction: Optional[ParsedTransaction] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class MatchRule:
    """Criteria controlling candidate acceptance."""

    id: int
    tenant_id: str
    name: str
    description: Optional[str]
    match_by_amount: bool
    match_by_date: bool
    date_tolerance_days: int
    match_by_reference: bool
    active: bool
    created_by: Optional[str]
    created_at: datetime

    @property
    def has_criteria(self) -> bool:
        return self.match_by_amount or self.match_by_date or self.match_by_reference


@dataclass(frozen=True)
class MatchSet:
    """Data sources plus one rule; the unit of a reconciliation run."""

    id: int
    tenant_id: str
    name: str
    description: Optional[str]
    rule_id: int
    run_status: RunStatus
    current_run_id: Optional[int]
    last_run_at: Optional[datetime]
    created_by: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class MatchRun:
    id: int
    match_set_id: int
    tenant_id: str
    status: RunStatus
    started_by: str
    started_at: datetime
    finished_at: Optional[datetime]
    group_count: int
    matched_count: int
    unmatched_count: int
    error_message: Optional[str]


@dataclass(frozen=True)
class TransactionMatch:
    """One resolved match group and its approval state."""

    id: int
    tenant_id: str
    match_set_id: int
    match_rule_id: Optional[int]
    run_id: Optional[int]
    match_group_id: str
    match_status: MatchStatus
    match_type: MatchType
    matched_by: str
    approved_by: Optional[str]
    approval_date: Optional[datetime]
    rejection_reason: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class MatchedTransaction:
    id: int
    tenant_id: str
    match_set_id: int
    match_id: int
    transaction_id: int
    match_group_id: str


@dataclass(frozen=True)
class UnmatchedTransaction:
    id: int
    tenant_id: str
    match_set_id: int
    run_id: Optional[int]
    transaction_id: int
    reason: str
