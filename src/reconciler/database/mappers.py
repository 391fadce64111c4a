"""Mapper functions to convert between domain models and SQLAlchemy models.

This layer isolates the conversion logic, including the enum values stored
as plain strings.
"""

from decimal import Decimal

from reconciler.domain import entities as domain
from reconciler.database.models import (
    DataSource as ORMDataSource,
    DataSourceSchema as ORMDataSourceSchema,
    SchemaField as ORMSchemaField,
    SchemaMapping as ORMSchemaMapping,
    FileParsingConfig as ORMFileParsingConfig,
    ImportRecord as ORMImportRecord,
    RawTransaction as ORMRawTransaction,
    Transaction as ORMTransaction,
    MatchRule as ORMMatchRule,
    MatchSet as ORMMatchSet,
    MatchRun as ORMMatchRun,
    TransactionMatch as ORMTransactionMatch,
    MatchedTransaction as ORMMatchedTransaction,
    UnmatchedTransaction as ORMUnmatchedTransaction,
)


def data_source_to_domain(orm_source: ORMDataSource) -> domain.DataSource:
    """Convert SQLAlchemy DataSource model to domain DataSource entity."""
    definition = None
    if orm_source.schema_definition:
        definition = domain.SchemaDefinition.from_dict(orm_source.schema_definition)
    return domain.DataSource(
        id=orm_source.id,
        tenant_id=orm_source.tenant_id,
        name=orm_source.name,
        description=orm_source.description,
        schema_id=orm_source.schema_id,
        schema_definition=definition,
        created_at=orm_source.created_at,
    )


def schema_to_domain(orm_schema: ORMDataSourceSchema) -> domain.DataSourceSchema:
    return domain.DataSourceSchema(
        id=orm_schema.id,
        tenant_id=orm_schema.tenant_id,
        name=orm_schema.name,
        description=orm_schema.description,
        created_by=orm_schema.created_by,
        created_at=orm_schema.created_at,
    )


def schema_field_to_domain(orm_field: ORMSchemaField) -> domain.SchemaField:
    return domain.SchemaField(
        id=orm_field.id,
        schema_id=orm_field.schema_id,
        name=orm_field.name,
        display_name=orm_field.display_name,
        type=domain.FieldType(orm_field.type),
        required=orm_field.required,
        default_value=orm_field.default_value,
        order=orm_field.order,
    )


def schema_mapping_to_domain(orm_mapping: ORMSchemaMapping) -> domain.SchemaMapping:
    return domain.SchemaMapping(
        id=orm_mapping.id,
        schema_id=orm_mapping.schema_id,
        source_field_name=orm_mapping.source_field_name,
        target_field_name=orm_mapping.target_field_name,
        transformation=orm_mapping.transformation,
    )


def parsing_config_to_domain(orm_config: ORMFileParsingConfig) -> domain.FileParsingConfig:
    return domain.FileParsingConfig(
        id=orm_config.id,
        schema_id=orm_config.schema_id,
        file_type=orm_config.file_type,
        has_header_row=orm_config.has_header_row,
        delimiter=orm_config.delimiter,
        date_format=orm_config.date_format,
        time_format=orm_config.time_format,
        number_format=orm_config.number_format,
        quote_char=orm_config.quote_char,
    )


def import_record_to_domain(orm_import: ORMImportRecord) -> domain.ImportRecord:
    """Convert SQLAlchemy ImportRecord model to domain ImportRecord entity."""
    return domain.ImportRecord(
        id=orm_import.id,
        tenant_id=orm_import.tenant_id,
        data_source_id=orm_import.data_source_id,
        file_name=orm_import.file_name,
        file_size=orm_import.file_size,
        status=domain.ImportStatus(orm_import.status),
        row_count=orm_import.row_count,
        success_count=orm_import.success_count,
        error_count=orm_import.error_count,
        imported_by=orm_import.imported_by,
        error_message=orm_import.error_message,
        created_at=orm_import.created_at,
    )


def raw_transaction_to_domain(orm_raw: ORMRawTransaction) -> domain.RawTransaction:
    return domain.RawTransaction(
        id=orm_raw.id,
        import_id=orm_raw.import_id,
        data_source_id=orm_raw.data_source_id,
        row_number=orm_raw.row_number,
        data=dict(orm_raw.data or {}),
        error_message=orm_raw.error_message,
    )


def transaction_to_domain(orm_transaction: ORMTransaction) -> domain.Transaction:
    """Convert SQLAlchemy Transaction model to domain Transaction entity."""
    return domain.Transaction(
        id=orm_transaction.id,
        tenant_id=orm_transaction.tenant_id,
        data_source_id=orm_transaction.data_source_id,
        import_id=orm_transaction.import_id,
        transaction_date=orm_transaction.transaction_date,
        post_date=orm_transaction.post_date,
        description=orm_transaction.description,
        reference=orm_transaction.reference,
        amount=Decimal(orm_transaction.amount),
        currency=orm_transaction.currency,
        status=domain.TransactionStatus(orm_transaction.status),
        created_by=orm_transaction.created_by,
        created_at=orm_transaction.created_at,
    )


def match_rule_to_domain(orm_rule: ORMMatchRule) -> domain.MatchRule:
    return domain.MatchRule(
        id=orm_rule.id,
        tenant_id=orm_rule.tenant_id,
        name=orm_rule.name,
        description=orm_rule.description,
        match_by_amount=orm_rule.match_by_amount,
        match_by_date=orm_rule.match_by_date,
        date_tolerance_days=orm_rule.date_tolerance_days,
        match_by_reference=orm_rule.match_by_reference,
        active=orm_rule.active,
        created_by=orm_rule.created_by,
        created_at=orm_rule.created_at,
    )


def match_set_to_domain(orm_set: ORMMatchSet) -> domain.MatchSet:
    return domain.MatchSet(
        id=orm_set.id,
        tenant_id=orm_set.tenant_id,
        name=orm_set.name,
        description=orm_set.description,
        rule_id=orm_set.rule_id,
        run_status=domain.RunStatus(orm_set.run_status),
        current_run_id=orm_set.current_run_id,
        last_run_at=orm_set.last_run_at,
        created_by=orm_set.created_by,
        created_at=orm_set.created_at,
    )


def match_run_to_domain(orm_run: ORMMatchRun) -> domain.MatchRun:
    return domain.MatchRun(
        id=orm_run.id,
        match_set_id=orm_run.match_set_id,
        tenant_id=orm_run.tenant_id,
        status=domain.RunStatus(orm_run.status),
        started_by=orm_run.started_by,
        started_at=orm_run.started_at,
        finished_at=orm_run.finished_at,
        group_count=orm_run.group_count,
        matched_count=orm_run.matched_count,
        unmatched_count=orm_run.unmatched_count,
        error_message=orm_run.error_message,
    )


def transaction_match_to_domain(orm_match: ORMTransactionMatch) -> domain.TransactionMatch:
    """Convert SQLAlchemy TransactionMatch model to domain TransactionMatch entity."""
    return domain.TransactionMatch(
        id=orm_match.id,
        tenant_id=orm_match.tenant_id,
        match_set_id=orm_match.match_set_id,
        match_rule_id=orm_match.match_rule_id,
        run_id=orm_match.run_id,
        match_group_id=orm_match.match_group_id,
        match_status=domain.MatchStatus(orm_match.match_status),
        match_type=domain.MatchType(orm_match.match_type),
        matched_by=orm_match.matched_by,
        approved_by=orm_match.approved_by,
        approval_date=orm_match.approval_date,
        rejection_reason=orm_match.rejection_reason,
        created_at=orm_match.created_at,
    )


def matched_transaction_to_domain(orm_row: ORMMatchedTransaction) -> domain.MatchedTransaction:
    return domain.MatchedTransaction(
        id=orm_row.id,
        tenant_id=orm_row.tenant_id,
        match_set_id=orm_row.match_set_id,
        match_id=orm_row.match_id,
        transaction_id=orm_row.transaction_id,
        match_group_id=orm_row.match_group_id,
    )


def unmatched_transaction_to_domain(orm_row: ORMUnmatchedTransaction) -> domain.UnmatchedTransaction:
    return domain.UnmatchedTransaction(
        id=orm_row.id,
        tenant_id=orm_row.tenant_id,
        match_set_id=orm_row.match_set_id,
        run_id=orm_row.run_id,
        transaction_id=orm_row.transaction_id,
        reason=orm_row.reason,
    )
