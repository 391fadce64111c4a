"""SQLAlchemy models for reconciler database."""

from datetime import datetime, UTC
from sqlalchemy import (
    JSON,
    Column,
    Integer,
    String,
    ForeignKey,
    DateTime,
    Date,
    Numeric,
    Boolean,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, relationship, scoped_session, sessionmaker, Session

Base = declarative_base()


def _now() -> datetime:
    return datetime.now(UTC)


class UserRole(Base):
    """Tenant-scoped role assignment."""

    __tablename__ = "user_roles"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False)
    tenant_id = Column(String, nullable=False, index=True)
    role = Column(String, nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "tenant_id", "role", name="uq_user_tenant_role"),)


class DataSourceSchema(Base):
    """Schema registry entry."""

    __tablename__ = "data_source_schemas"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_schema_tenant_name"),)

    # Relationships
    fields = relationship(
        "SchemaField", back_populates="schema", cascade="all, delete-orphan", order_by="SchemaField.order"
    )
    mappings = relationship("SchemaMapping", back_populates="schema", cascade="all, delete-orphan")
    parsing_configs = relationship(
        "FileParsingConfig", back_populates="schema", cascade="all, delete-orphan"
    )


class SchemaField(Base):
    __tablename__ = "schema_fields"

    id = Column(Integer, primary_key=True)
    schema_id = Column(Integer, ForeignKey("data_source_schemas.id"), nullable=False)
    name = Column(String, nullable=False)
    display_name = Column(String, nullable=True)
    type = Column(String, nullable=False, default="string")
    required = Column(Boolean, default=False, nullable=False)
    default_value = Column(String, nullable=True)
    order = Column("field_order", Integer, nullable=False, default=0)

    schema = relationship("DataSourceSchema", back_populates="fields")


class SchemaMapping(Base):
    """Source column to canonical field mapping."""

    __tablename__ = "schema_mappings"

    id = Column(Integer, primary_key=True)
    schema_id = Column(Integer, ForeignKey("data_source_schemas.id"), nullable=False)
    source_field_name = Column(String, nullable=False)
    target_field_name = Column(String, nullable=False)
    transformation = Column(String, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("schema_id", "source_field_name", name="uq_mapping_schema_source"),
    )

    schema = relationship("DataSourceSchema", back_populates="mappings")


class FileParsingConfig(Base):
    __tablename__ = "file_parsing_configs"

    id = Column(Integer, primary_key=True)
    schema_id = Column(Integer, ForeignKey("data_source_schemas.id"), nullable=False)
    file_type = Column(String, nullable=False)
    has_header_row = Column(Boolean, default=True, nullable=False)
    delimiter = Column(String, nullable=True)
    date_format = Column(String, nullable=True)
    time_format = Column(String, nullable=True)
    number_format = Column(String, nullable=True)
    quote_char = Column(String, nullable=True)

    __table_args__ = (UniqueConstraint("schema_id", "file_type", name="uq_parsing_schema_file_type"),)

    schema = relationship("DataSourceSchema", back_populates="parsing_configs")


class DataSource(Base):
    """Named feed of transactions."""

    __tablename__ = "data_sources"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    schema_id = Column(Integer, ForeignKey("data_source_schemas.id"), nullable=True)
    schema_definition = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_data_source_tenant_name"),)


class ImportRecord(Base):
    """File upload model."""

    __tablename__ = "import_records"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    data_source_id = Column(Integer, ForeignKey("data_sources.id"), nullable=False)
    file_name = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False)
    row_count = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    imported_by = Column(String, nullable=False)
    error_message = Column(String, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    # Relationships
    raw_transactions = relationship(
        "RawTransaction", back_populates="import_record", cascade="all, delete-orphan"
    )


class RawTransaction(Base):
    """Original source row."""

    __tablename__ = "raw_transactions"

    id = Column(Integer, primary_key=True)
    import_id = Column(Integer, ForeignKey("import_records.id", ondelete="CASCADE"), nullable=False)
    tenant_id = Column(String, nullable=False)
    data_source_id = Column(Integer, ForeignKey("data_sources.id"), nullable=False)
    row_number = Column(Integer, nullable=False)
    data = Column(JSON, nullable=False)
    error_message = Column(String, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    import_record = relationship("ImportRecord", back_populates="raw_transactions")


class Transaction(Base):
    """Canonical transaction model."""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    data_source_id = Column(Integer, ForeignKey("data_sources.id"), nullable=False, index=True)
    import_id = Column(Integer, ForeignKey("import_records.id", ondelete="SET NULL"), nullable=True)
    transaction_date = Column(Date, nullable=False)
    post_date = Column(Date, nullable=False)
    description = Column(String, nullable=True)
    reference = Column(String, nullable=True)
    amount = Column(Numeric(18, 4), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(String, nullable=False, index=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)


class MatchRule(Base):
    __tablename__ = "match_rules"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    match_by_amount = Column(Boolean, default=False, nullable=False)
    match_by_date = Column(Boolean, default=False, nullable=False)
    date_tolerance_days = Column(Integer, default=0, nullable=False)
    match_by_reference = Column(Boolean, default=False, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)


class MatchSet(Base):
    """Match set model; run_status doubles as the per-set run lock."""

    __tablename__ = "match_sets"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    rule_id = Column(Integer, ForeignKey("match_rules.id"), nullable=False)
    run_status = Column(String, nullable=False, default="Idle")
    current_run_id = Column(Integer, nullable=True)
    last_run_at = Column(DateTime, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    # Relationships
    data_source_links = relationship(
        "MatchSetDataSource",
        back_populates="match_set",
        cascade="all, delete-orphan",
        order_by="MatchSetDataSource.id",
    )


class MatchSetDataSource(Base):
    __tablename__ = "match_set_data_sources"

    id = Column(Integer, primary_key=True)
    match_set_id = Column(Integer, ForeignKey("match_sets.id"), nullable=False)
    data_source_id = Column(Integer, ForeignKey("data_sources.id"), nullable=False)
    tenant_id = Column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("match_set_id", "data_source_id", name="uq_match_set_data_source"),
    )

    match_set = relationship("MatchSet", back_populates="data_source_links")


class MatchRun(Base):
    """One execution of a match set."""

    __tablename__ = "match_runs"

    id = Column(Integer, primary_key=True)
    match_set_id = Column(Integer, ForeignKey("match_sets.id"), nullable=False, index=True)
    tenant_id = Column(String, nullable=False)
    status = Column(String, nullable=False)
    started_by = Column(String, nullable=False)
    started_at = Column(DateTime, default=_now, nullable=False)
    finished_at = Column(DateTime, nullable=True)
    group_count = Column(Integer, nullable=False, default=0)
    matched_count = Column(Integer, nullable=False, default=0)
    unmatched_count = Column(Integer, nullable=False, default=0)
    error_message = Column(String, nullable=True)


class TransactionMatch(Base):
    """Resolved match group."""

    __tablename__ = "transaction_matches"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    match_set_id = Column(Integer, ForeignKey("match_sets.id"), nullable=False)
    match_rule_id = Column(Integer, ForeignKey("match_rules.id"), nullable=True)
    run_id = Column(Integer, ForeignKey("match_runs.id"), nullable=True)
    match_group_id = Column(String, nullable=False, unique=True)
    match_status = Column(String, nullable=False, index=True)
    match_type = Column(String, nullable=False)
    matched_by = Column(String, nullable=False)
    approved_by = Column(String, nullable=True)
    approval_date = Column(DateTime, nullable=True)
    rejection_reason = Column(String, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    # Relationships
    members = relationship("MatchedTransaction", back_populates="match", cascade="all, delete-orphan")


class MatchedTransaction(Base):
    """Join row tying a transaction to its active match group."""

    __tablename__ = "matched_transactions"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False)
    match_set_id = Column(Integer, ForeignKey("match_sets.id"), nullable=False, index=True)
    match_id = Column(Integer, ForeignKey("transaction_matches.id"), nullable=False)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, unique=True)
    match_group_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    match = relationship("TransactionMatch", back_populates="members")


class UnmatchedTransaction(Base):
    __tablename__ = "unmatched_transactions"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False)
    match_set_id = Column(Integer, ForeignKey("match_sets.id"), nullable=False, index=True)
    run_id = Column(Integer, ForeignKey("match_runs.id"), nullable=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False)
    reason = Column(String, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)


def create_session_factory(database_url: str) -> scoped_session[Session]:
    """Create a thread-local SQLAlchemy session registry."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Sessions are per thread; the pool may still hand a connection across threads
        connect_args["check_same_thread"] = False
    engine = create_engine(database_url, echo=False, connect_args=connect_args)
    Base.metadata.create_all(engine)
    return scoped_session(sessionmaker(bind=engine))
