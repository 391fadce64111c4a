"""Schema registry domain service.

Holds the data sources of a tenant, their schemas, the column mappings that
turn raw file columns into canonical transaction fields, and per-file-type
parsing options.
"""

import logging
from typing import Any, Optional

from reconciler.database.base import Database
from reconciler.domain.authorization import Authorizer, Permission, require_permission
from reconciler.domain.entities import (
    CANONICAL_FIELDS,
    REQUIRED_CANONICAL_FIELDS,
    DataSource,
    DataSourceSchema,
    FieldType,
    FileParsingConfig,
    SchemaDefinition,
    SchemaField,
    SchemaMapping,
)
from reconciler.domain.errors import ConflictError, NotFoundError, ValidationError, not_found
from reconciler.utils.amount_parser import DECIMAL_COMMA_FORMAT

logger = logging.getLogger(__name__)

# Applied to the raw cell text
TEXT_TRANSFORMATIONS = {"trim", "upper", "lower"}
# Applied to the parsed amount, so only valid on amount mappings
AMOUNT_TRANSFORMATIONS = {"negate", "abs"}
TRANSFORMATIONS = TEXT_TRANSFORMATIONS | AMOUNT_TRANSFORMATIONS

NUMBER_FORMATS = ("1,234.56", DECIMAL_COMMA_FORMAT)
DEFAULT_FILE_TYPE = "CSV"


class SchemaService:
    """Service for managing data sources, schemas and column mappings."""

    def __init__(self, db: Database, authorizer: Optional[Authorizer] = None):
        """Initialize schema service.

        Args:
            db: Database instance
            authorizer: When given, changes require the manage:schemas permission
        """
        self.db = db
        self.authorizer = authorizer

    def _authorize(self, user_id: Optional[str], tenant_id: str) -> None:
        if self.authorizer is not None:
            require_permission(self.authorizer, user_id or "", Permission.MANAGE_SCHEMAS, tenant_id)

    # Data sources
    def create_data_source(
        self,
        tenant_id: str,
        name: str,
        description: Optional[str] = None,
        schema_id: Optional[int] = None,
        schema_definition: SchemaDefinition | dict[str, Any] | None = None,
        created_by: Optional[str] = None,
    ) -> int:
        """Create a data source.

        Args:
            tenant_id: Owning tenant
            name: Data source name, unique per tenant
            description: Optional description
            schema_id: Optional registered schema whose mappings drive imports
            schema_definition: Optional inline definition (entity or dict)
            created_by: Acting user

        Returns:
            Data source ID

        Raises:
            ValidationError: If the name is blank or the definition is inconsistent
            ConflictError: If the name is taken
            NotFoundError: If the schema does not exist in the tenant
        """
        self._authorize(created_by, tenant_id)
        if not name or not name.strip():
            raise ValidationError("Data source name is required")
        name = name.strip()
        if self.db.get_data_source_by_name(tenant_id, name) is not None:
            raise ConflictError(f"Data source with name '{name}' already exists")
        if schema_id is not None:
            self.get_schema(schema_id, tenant_id)

        if isinstance(schema_definition, dict):
            schema_definition = SchemaDefinition.from_dict(schema_definition)
        if schema_definition is not None:
            self._validate_definition(schema_definition)

        data_source_id = self.db.create_data_source(
            tenant_id=tenant_id,
            name=name,
            description=description,
            schema_id=schema_id,
            schema_definition=schema_definition,
        )
        logger.info("Created data source %s (%s) in tenant %s", data_source_id, name, tenant_id)
        return data_source_id

    @staticmethod
    def _validate_definition(definition: SchemaDefinition) -> None:
        names = [f.name for f in definition.fields]
        if len(names) != len(set(names)):
            raise ValidationError("Schema definition has duplicate field names")
        unknown = [name for name in definition.required_fields if name not in names]
        if unknown:
            raise ValidationError(f"Required fields are not defined: {', '.join(unknown)}")
        bad_targets = [t for t in definition.default_mappings if t not in CANONICAL_FIELDS]
        if bad_targets:
            raise ValidationError(f"Default mappings target unknown fields: {', '.join(bad_targets)}")

    def get_data_source(self, data_source_id: int, tenant_id: str) -> DataSource:
        source = self.db.get_data_source(data_source_id, tenant_id)
        if source is None:
            raise NotFoundError(not_found("Data source", data_source_id))
        return source

    def get_data_source_by_name(self, tenant_id: str, name: str) -> Optional[DataSource]:
        return self.db.get_data_source_by_name(tenant_id, name)

    def list_data_sources(self, tenant_id: str) -> list[DataSource]:
        return self.db.list_data_sources(tenant_id)

    # Schemas
    def create_schema(
        self,
        tenant_id: str,
        name: str,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> int:
        """Create a schema.

        Raises:
            ValidationError: If the name is blank
            ConflictError: If the name is taken in the tenant
        """
        self._authorize(created_by, tenant_id)
        if not name or not name.strip():
            raise ValidationError("Schema name is required")
        name = name.strip()
        if self.db.get_schema_by_name(tenant_id, name) is not None:
            raise ConflictError(f"Schema with name '{name}' already exists")
        schema_id = self.db.create_schema(tenant_id, name, description, created_by)
        logger.info("Created schema %s (%s) in tenant %s", schema_id, name, tenant_id)
        return schema_id

    def get_schema(self, schema_id: int, tenant_id: str) -> DataSourceSchema:
        schema = self.db.get_schema(schema_id, tenant_id)
        if schema is None:
            raise NotFoundError(not_found("Schema", schema_id))
        return schema

    def get_schema_by_name(self, tenant_id: str, name: str) -> Optional[DataSourceSchema]:
        return self.db.get_schema_by_name(tenant_id, name)

    def list_schemas(self, tenant_id: str) -> list[DataSourceSchema]:
        return self.db.list_schemas(tenant_id)

    def add_field(
        self,
        schema_id: int,
        tenant_id: str,
        name: str,
        field_type: FieldType | str = FieldType.STRING,
        required: bool = False,
        display_name: Optional[str] = None,
        default_value: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> int:
        """Append a field to a schema.

        Raises:
            ValidationError: If the name is blank, duplicated or the type is unknown
            NotFoundError: If the schema does not exist
        """
        self._authorize(user_id, tenant_id)
        self.get_schema(schema_id, tenant_id)
        if not name or not name.strip():
            raise ValidationError("Field name is required")
        try:
            field_type = FieldType(field_type)
        except ValueError:
            raise ValidationError(
                f"Invalid field type '{field_type}'. Must be one of: {', '.join(t.value for t in FieldType)}"
            )
        if any(f.name == name.strip() for f in self.db.list_schema_fields(schema_id)):
            raise ValidationError(f"Schema {schema_id} already has a field named '{name.strip()}'")

        return self.db.add_schema_field(
            schema_id=schema_id,
            name=name.strip(),
            field_type=field_type.value,
            required=required,
            display_name=display_name,
            default_value=default_value,
        )

    def list_fields(self, schema_id: int, tenant_id: str) -> list[SchemaField]:
        self.get_schema(schema_id, tenant_id)
        return self.db.list_schema_fields(schema_id)

    # Mappings
    def add_mapping(
        self,
        schema_id: int,
        tenant_id: str,
        source_field_name: str,
        target_field_name: str,
        transformation: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> int:
        """Map a source column to a canonical transaction field.

        Args:
            schema_id: Schema ID
            tenant_id: Owning tenant
            source_field_name: Column header in the source file
            target_field_name: Canonical field (date, postDate, description,
                amount, reference, currency)
            transformation: Optional trim/upper/lower, or negate/abs for amounts
            user_id: Acting user

        Returns:
            Mapping ID

        Raises:
            ValidationError: If the target or transformation is invalid
            ConflictError: If the source field is already mapped
        """
        self._authorize(user_id, tenant_id)
        self.get_schema(schema_id, tenant_id)
        if not source_field_name or not source_field_name.strip():
            raise ValidationError("Source field name is required")
        if target_field_name not in CANONICAL_FIELDS:
            raise ValidationError(
                f"Invalid target field '{target_field_name}'. "
                f"Must be one of: {', '.join(CANONICAL_FIELDS)}"
            )
        if transformation is not None:
            transformation = transformation.strip().lower()
            if transformation not in TRANSFORMATIONS:
                raise ValidationError(
                    f"Invalid transformation '{transformation}'. "
                    f"Must be one of: {', '.join(sorted(TRANSFORMATIONS))}"
                )
            if transformation in AMOUNT_TRANSFORMATIONS and target_field_name != "amount":
                raise ValidationError(f"Transformation '{transformation}' only applies to amount")
        if any(
            m.source_field_name.lower() == source_field_name.strip().lower()
            for m in self.db.get_schema_mappings(schema_id)
        ):
            raise ConflictError(f"Source field '{source_field_name.strip()}' is already mapped")

        return self.db.add_schema_mapping(
            schema_id=schema_id,
            source_field_name=source_field_name.strip(),
            target_field_name=target_field_name,
            transformation=transformation,
        )

    def get_mappings(self, schema_id: int, tenant_id: str) -> list[SchemaMapping]:
        self.get_schema(schema_id, tenant_id)
        return self.db.get_schema_mappings(schema_id)

    def delete_mapping(
        self, mapping_id: int, schema_id: int, tenant_id: str, user_id: Optional[str] = None
    ) -> None:
        self._authorize(user_id, tenant_id)
        self.get_schema(schema_id, tenant_id)
        if not self.db.delete_schema_mapping(mapping_id, schema_id):
            raise NotFoundError(not_found("Schema mapping", mapping_id))

    def validate_mappings(self, schema_id: int, tenant_id: str) -> tuple[bool, list[str]]:
        """Check that a schema maps every required canonical field.

        Returns:
            Tuple of (is_valid, list of missing required fields)
        """
        mapped = {m.target_field_name for m in self.get_mappings(schema_id, tenant_id)}
        missing = [f for f in REQUIRED_CANONICAL_FIELDS if f not in mapped]
        return len(missing) == 0, missing

    # Parsing configs
    @staticmethod
    def _validate_parsing_options(options: dict[str, Any]) -> None:
        number_format = options.get("number_format")
        if number_format is not None and number_format not in NUMBER_FORMATS:
            raise ValidationError(
                f"Invalid number format '{number_format}'. Must be one of: {', '.join(NUMBER_FORMATS)}"
            )
        for key in ("delimiter", "quote_char"):
            value = options.get(key)
            if value is not None and len(value) != 1:
                raise ValidationError(f"{key.replace('_', ' ').capitalize()} must be a single character")

    def create_parsing_config(
        self,
        schema_id: int,
        tenant_id: str,
        file_type: str = DEFAULT_FILE_TYPE,
        has_header_row: bool = True,
        delimiter: Optional[str] = None,
        date_format: Optional[str] = None,
        time_format: Optional[str] = None,
        number_format: Optional[str] = None,
        quote_char: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> int:
        """Create the parsing config for one file type of a schema.

        Raises:
            ValidationError: If an option is invalid
            ConflictError: If the schema already has a config for the file type
        """
        self._authorize(user_id, tenant_id)
        self.get_schema(schema_id, tenant_id)
        options = {
            "has_header_row": has_header_row,
            "delimiter": delimiter,
            "date_format": date_format,
            "time_format": time_format,
            "number_format": number_format,
            "quote_char": quote_char,
        }
        self._validate_parsing_options(options)
        if self.db.get_parsing_config(schema_id, file_type.upper()) is not None:
            raise ConflictError(f"Schema {schema_id} already has a {file_type.upper()} parsing config")
        return self.db.create_parsing_config(schema_id, file_type.upper(), **options)

    def get_parsing_config(
        self, schema_id: int, tenant_id: str, file_type: str = DEFAULT_FILE_TYPE
    ) -> Optional[FileParsingConfig]:
        self.get_schema(schema_id, tenant_id)
        return self.db.get_parsing_config(schema_id, file_type.upper())

    def update_parsing_config(
        self,
        schema_id: int,
        tenant_id: str,
        file_type: str = DEFAULT_FILE_TYPE,
        user_id: Optional[str] = None,
        **options: Any,
    ) -> FileParsingConfig:
        self._authorize(user_id, tenant_id)
        config = self.get_parsing_config(schema_id, tenant_id, file_type)
        if config is None:
            raise NotFoundError(f"Schema {schema_id} has no {file_type.upper()} parsing config")
        self._validate_parsing_options(options)
        self.db.update_parsing_config(config.id, **options)
        return self.db.get_parsing_config(schema_id, file_type.upper())
