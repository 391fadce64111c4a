"""Tests for SchemaService."""

import pytest

from reconciler.domain.entities import FieldType
from reconciler.domain.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from reconciler.domain.schema import SchemaService

from conftest import ADMIN, OTHER_TENANT, PREPARER, TENANT


@pytest.fixture
def schema_id(schema_service):
    return schema_service.create_schema(TENANT, "bank-csv", "Bank export")


class TestDataSources:
    def test_create_and_list(self, schema_service):
        schema_service.create_data_source(TENANT, "Ledger")
        schema_service.create_data_source(TENANT, "Bank", description="Main account")

        assert [s.name for s in schema_service.list_data_sources(TENANT)] == ["Bank", "Ledger"]
        assert schema_service.list_data_sources(OTHER_TENANT) == []

    def test_duplicate_name(self, schema_service, bank_source):
        with pytest.raises(ConflictError):
            schema_service.create_data_source(TENANT, "Bank Statement")

    def test_same_name_in_other_tenant(self, schema_service, bank_source):
        assert schema_service.create_data_source(OTHER_TENANT, "Bank Statement")

    def test_blank_name(self, schema_service):
        with pytest.raises(ValidationError):
            schema_service.create_data_source(TENANT, " ")

    def test_unknown_schema(self, schema_service):
        with pytest.raises(NotFoundError):
            schema_service.create_data_source(TENANT, "Bank", schema_id=99)

    def test_definition_from_dict(self, schema_service):
        data_source_id = schema_service.create_data_source(
            TENANT,
            "Bank",
            schema_definition={
                "fields": [{"name": "Date", "type": "date", "required": True}],
                "date_format": "%Y-%m-%d",
                "required_fields": ["Date"],
                "default_mappings": {"date": "Date"},
            },
        )

        definition = schema_service.get_data_source(data_source_id, TENANT).schema_definition
        assert definition.fields[0].type == FieldType.DATE
        assert definition.date_format == "%Y-%m-%d"
        assert definition.default_mappings == {"date": "Date"}

    def test_definition_with_unknown_required_field(self, schema_service):
        with pytest.raises(ValidationError, match="Required fields"):
            schema_service.create_data_source(
                TENANT, "Bank", schema_definition={"fields": [], "required_fields": ["Amount"]}
            )

    def test_definition_with_bad_default_mapping(self, schema_service):
        with pytest.raises(ValidationError, match="unknown fields"):
            schema_service.create_data_source(
                TENANT, "Bank", schema_definition={"default_mappings": {"memo": "Memo"}}
            )

    def test_foreign_tenant(self, schema_service, bank_source):
        with pytest.raises(NotFoundError):
            schema_service.get_data_source(bank_source.id, OTHER_TENANT)


class TestSchemas:
    def test_duplicate_schema_name(self, schema_service, schema_id):
        with pytest.raises(ConflictError):
            schema_service.create_schema(TENANT, "bank-csv")

    def test_fields_keep_order(self, schema_service, schema_id):
        schema_service.add_field(schema_id, TENANT, "Date", "date", required=True)
        schema_service.add_field(schema_id, TENANT, "Amount", FieldType.NUMBER)

        fields = schema_service.list_fields(schema_id, TENANT)
        assert [(f.name, f.type) for f in fields] == [("Date", FieldType.DATE), ("Amount", FieldType.NUMBER)]
        assert fields[0].required

    def test_field_validation(self, schema_service, schema_id):
        with pytest.raises(ValidationError):
            schema_service.add_field(schema_id, TENANT, "Date", "datetime")
        schema_service.add_field(schema_id, TENANT, "Date", "date")
        with pytest.raises(ValidationError, match="already has a field"):
            schema_service.add_field(schema_id, TENANT, "Date", "string")

    def test_schema_of_other_tenant(self, schema_service, schema_id):
        with pytest.raises(NotFoundError):
            schema_service.get_schema(schema_id, OTHER_TENANT)


class TestMappings:
    def test_add_and_validate(self, schema_service, schema_id):
        schema_service.add_mapping(schema_id, TENANT, "Date", "date")
        schema_service.add_mapping(schema_id, TENANT, "Amount", "amount", transformation="negate")

        valid, missing = schema_service.validate_mappings(schema_id, TENANT)
        assert not valid
        assert missing == ["description", "reference"]

        schema_service.add_mapping(schema_id, TENANT, "Description", "description")
        schema_service.add_mapping(schema_id, TENANT, "Ref", "reference", transformation="UPPER")
        assert schema_service.validate_mappings(schema_id, TENANT) == (True, [])

        transformations = {m.target_field_name: m.transformation for m in schema_service.get_mappings(schema_id, TENANT)}
        assert transformations["amount"] == "negate"
        assert transformations["reference"] == "upper"

    def test_invalid_target(self, schema_service, schema_id):
        with pytest.raises(ValidationError, match="Invalid target field"):
            schema_service.add_mapping(schema_id, TENANT, "Memo", "memo")

    def test_invalid_transformation(self, schema_service, schema_id):
        with pytest.raises(ValidationError, match="Invalid transformation"):
            schema_service.add_mapping(schema_id, TENANT, "Amount", "amount", transformation="double")

    def test_amount_transformation_on_text_field(self, schema_service, schema_id):
        with pytest.raises(ValidationError, match="only applies to amount"):
            schema_service.add_mapping(schema_id, TENANT, "Ref", "reference", transformation="abs")

    def test_source_field_mapped_once(self, schema_service, schema_id):
        schema_service.add_mapping(schema_id, TENANT, "Amount", "amount")
        with pytest.raises(ConflictError):
            schema_service.add_mapping(schema_id, TENANT, "amount", "description")

    def test_delete_mapping(self, schema_service, schema_id):
        mapping_id = schema_service.add_mapping(schema_id, TENANT, "Date", "date")

        schema_service.delete_mapping(mapping_id, schema_id, TENANT)

        assert schema_service.get_mappings(schema_id, TENANT) == []
        with pytest.raises(NotFoundError):
            schema_service.delete_mapping(mapping_id, schema_id, TENANT)


class TestParsingConfig:
    def test_create_and_update(self, schema_service, schema_id):
        schema_service.create_parsing_config(schema_id, TENANT, delimiter=";", number_format="1.234,56")

        config = schema_service.update_parsing_config(schema_id, TENANT, date_format="%d-%m-%Y")

        assert config.file_type == "CSV"
        assert config.delimiter == ";"
        assert config.number_format == "1.234,56"
        assert config.date_format == "%d-%m-%Y"
        assert config.has_header_row

    def test_one_config_per_file_type(self, schema_service, schema_id):
        schema_service.create_parsing_config(schema_id, TENANT)
        with pytest.raises(ConflictError):
            schema_service.create_parsing_config(schema_id, TENANT, file_type="csv")

    def test_invalid_options(self, schema_service, schema_id):
        with pytest.raises(ValidationError, match="number format"):
            schema_service.create_parsing_config(schema_id, TENANT, number_format="1 234.56")
        with pytest.raises(ValidationError, match="single character"):
            schema_service.create_parsing_config(schema_id, TENANT, delimiter="||")

    def test_update_without_config(self, schema_service, schema_id):
        with pytest.raises(NotFoundError):
            schema_service.update_parsing_config(schema_id, TENANT, delimiter=",")


class TestSchemaPermissions:
    def test_changes_need_manage_schemas(self, temp_db, authorizer):
        service = SchemaService(temp_db, authorizer=authorizer)

        with pytest.raises(PermissionDeniedError):
            service.create_schema(TENANT, "csv", created_by=PREPARER)
        with pytest.raises(PermissionDeniedError):
            service.create_data_source(TENANT, "Bank")

        schema_id = service.create_schema(TENANT, "csv", created_by=ADMIN)
        service.add_mapping(schema_id, TENANT, "Date", "date", user_id=ADMIN)
        with pytest.raises(PermissionDeniedError):
            service.add_mapping(schema_id, TENANT, "Amount", "amount", user_id=PREPARER)

    def test_reads_need_no_permission(self, temp_db, authorizer):
        service = SchemaService(temp_db, authorizer=authorizer)
        schema_id = service.create_schema(TENANT, "csv", created_by=ADMIN)

        assert service.get_schema(schema_id, TENANT).name == "csv"
        assert len(service.list_schemas(TENANT)) == 1
