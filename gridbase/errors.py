"""
Exception types for gridbase.

Validation errors subclass ValueError so callers that only care about
"bad input" can keep catching ValueError.
"""


class GridbaseError(Exception):
    """Base class for all gridbase errors."""


class ValidationError(GridbaseError, ValueError):
    """Input rejected before any mutation was attempted."""


class FilterValidationError(ValidationError):
    """Malformed filter tree, unknown operator, or unknown column."""


class SortValidationError(ValidationError):
    """Malformed sort key sequence or sort key on an unknown column."""


class SchemaValidationError(ValidationError):
    """Invalid column name/type or cell values for unknown columns."""


class NotFoundError(GridbaseError, LookupError):
    """Requested entity does not exist."""

    entity = "Entity"

    def __init__(self, entity_id):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} {entity_id} not found")


class TableNotFoundError(NotFoundError):
    entity = "Table"


class ColumnNotFoundError(NotFoundError):
    entity = "Column"


class RowNotFoundError(NotFoundError):
    entity = "Row"


class CellNotFoundError(NotFoundError):
    entity = "Cell"


class PersistenceError(GridbaseError):
    """
    A unit of work could not be committed.

    Nothing from the failed unit is visible afterwards, so the caller may
    simply retry the same operation.
    """

    retryable = True
