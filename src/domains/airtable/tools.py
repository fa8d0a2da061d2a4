"""Airtable tool catalog.

The order of AIRTABLE_TOOLS is the order advertised to clients.
"""

from shared.models import ExecutionType, ToolDefinition
from shared.schema import object_schema, string_property

DOMAIN = "airtable"

# Types accepted by create_field
FIELD_TYPES = (
    "singleLineText", "multilineText", "email", "phoneNumber", "number",
    "currency", "date", "singleSelect", "multiSelect",
)

# Colors accepted for select field choices
FIELD_COLORS = (
    "blueBright", "redBright", "greenBright",
    "yellowBright", "purpleBright", "pinkBright",
    "grayBright", "cyanBright", "orangeBright",
    "blueDark1", "greenDark1",
)

BASE_ID = string_property("The ID of the base")
TABLE_ID = string_property("The ID or name of the table")

FIELD_OPTIONS = {
    "type": "object",
    "description": "Field-specific options (e.g., choices for select fields)",
    "properties": {
        "precision": {"type": "number"},
        "symbol": {"type": "string"},
        "dateFormat": {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "format": {"type": "string"},
            },
        },
        "choices": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "color": {"type": "string", "enum": list(FIELD_COLORS)},
                },
                "required": ["name"],
            },
        },
    },
}


AIRTABLE_TOOLS: tuple[ToolDefinition, ...] = (
    ToolDefinition(
        name="list_bases",
        domain=DOMAIN,
        description="List all accessible Airtable bases",
        input_schema=object_schema({}),
    ),
    ToolDefinition(
        name="list_tables",
        domain=DOMAIN,
        description="List all tables in a base",
        input_schema=object_schema(
            {"baseId": BASE_ID},
            required=["baseId"],
        ),
    ),
    ToolDefinition(
        name="create_table",
        domain=DOMAIN,
        description="Create a new table with fields",
        input_schema=object_schema(
            {
                "baseId": BASE_ID,
                "name": string_property("The name of the table"),
                "description": string_property("The description of the table (optional)"),
                "fields": {
                    "type": "array",
                    "description": "Array of field configurations",
                    "items": {
                        "type": "object",
                        "properties": {
                            "name": {"type": "string"},
                            "type": {"type": "string"},
                            "options": {"type": "object"},
                        },
                        "required": ["name", "type"],
                    },
                },
            },
            required=["baseId", "name", "fields"],
        ),
        execution_type=ExecutionType.WRITE,
    ),
    ToolDefinition(
        name="create_field",
        domain=DOMAIN,
        description="Add a new field to a table",
        input_schema=object_schema(
            {
                "baseId": BASE_ID,
                "tableId": string_property("The ID of the table"),
                "name": string_property("The name of the field"),
                "type": string_property(
                    f"The type of field ({', '.join(FIELD_TYPES)})"
                ),
                "options": FIELD_OPTIONS,
            },
            required=["baseId", "tableId", "name", "type"],
        ),
        execution_type=ExecutionType.WRITE,
    ),
    ToolDefinition(
        name="list_records",
        domain=DOMAIN,
        description="Retrieve records from a table",
        input_schema=object_schema(
            {
                "baseId": BASE_ID,
                "tableId": TABLE_ID,
                "maxRecords": {
                    "type": "number",
                    "description": "Maximum number of records to retrieve",
                    "default": 100,
                },
                "view": string_property("The name or ID of a view to use"),
                "filterByFormula": string_property("Airtable formula to filter records"),
                "sort": {
                    "type": "array",
                    "description": "Sort configuration",
                    "items": {
                        "type": "object",
                        "properties": {
                            "field": {"type": "string"},
                            "direction": {"type": "string", "enum": ["asc", "desc"]},
                        },
                        "required": ["field"],
                    },
                },
            },
            required=["baseId", "tableId"],
        ),
    ),
    ToolDefinition(
        name="create_record",
        domain=DOMAIN,
        description="Create a new record in a table",
        input_schema=object_schema(
            {
                "baseId": BASE_ID,
                "tableId": TABLE_ID,
                "fields": {
                    "type": "object",
                    "description": "The fields and values for the new record",
                },
            },
            required=["baseId", "tableId", "fields"],
        ),
        execution_type=ExecutionType.WRITE,
    ),
    ToolDefinition(
        name="update_record",
        domain=DOMAIN,
        description="Update an existing record",
        input_schema=object_schema(
            {
                "baseId": BASE_ID,
                "tableId": TABLE_ID,
                "recordId": string_property("The ID of the record to update"),
                "fields": {
                    "type": "object",
                    "description": "The fields and values to update",
                },
            },
            required=["baseId", "tableId", "recordId", "fields"],
        ),
        execution_type=ExecutionType.WRITE,
    ),
    ToolDefinition(
        name="delete_record",
        domain=DOMAIN,
        description="Delete a record",
        input_schema=object_schema(
            {
                "baseId": BASE_ID,
                "tableId": TABLE_ID,
                "recordId": string_property("The ID of the record to delete"),
            },
            required=["baseId", "tableId", "recordId"],
        ),
        execution_type=ExecutionType.WRITE,
    ),
    ToolDefinition(
        name="search_records",
        domain=DOMAIN,
        description="Find records matching criteria",
        input_schema=object_schema(
            {
                "baseId": BASE_ID,
                "tableId": TABLE_ID,
                "filterByFormula": string_property("Airtable formula to filter records"),
                "maxRecords": {
                    "type": "number",
                    "description": "Maximum number of records to return",
                    "default": 100,
                },
            },
            # filterByFormula is mandatory here, unlike list_records
            required=["baseId", "tableId", "filterByFormula"],
        ),
    ),
    ToolDefinition(
        name="get_record",
        domain=DOMAIN,
        description="Get a single record by its ID",
        input_schema=object_schema(
            {
                "baseId": BASE_ID,
                "tableId": TABLE_ID,
                "recordId": string_property("The ID of the record to retrieve"),
            },
            required=["baseId", "tableId", "recordId"],
        ),
    ),
)
