"""
Replication Errors
==================

Exception taxonomy for the replication engine.

- ConfigurationError: bad arguments, raised at construction before any I/O
- SchemaResolutionError: value type metadata cannot be resolved
- MappingError: a fetched row does not match the value type
- SourceError: the source failed while fetching a batch
"""


class ReplicationError(Exception):
    """Base exception for replication errors."""
    pass


class ConfigurationError(ReplicationError, ValueError):
    """Missing or out-of-range configuration value."""
    pass


class SchemaResolutionError(ReplicationError):
    """Value type metadata could not be resolved."""
    pass


class AmbiguousRowKeyError(SchemaResolutionError):
    """More than one member is designated as the row key."""

    def __init__(self, type_name: str, members):
        self.type_name = type_name
        self.members = list(members)
        super().__init__(
            f"Ambiguous row key on {type_name}: multiple members marked as row key "
            f"({', '.join(self.members)})"
        )


class MissingRowKeyError(SchemaResolutionError):
    """No row key designation and no "Id" member."""

    def __init__(self, type_name: str):
        self.type_name = type_name
        super().__init__(
            f"Row key not specified: type {type_name} has no member marked as row key "
            f"and no \"Id\" member"
        )


class MappingError(ReplicationError):
    """A bound column is absent from a fetched row or cannot be decoded."""

    def __init__(self, type_name: str, column: str, message: str = None):
        self.type_name = type_name
        self.column = column
        super().__init__(message or f"Column '{column}' required by {type_name} is absent from the fetched row")


class SourceError(ReplicationError):
    """Transport or execution failure while fetching from the source."""
    pass


class FetchTimeoutError(SourceError):
    """Fetch exceeded the configured timeout and was interrupted."""
    pass


class WatermarkStallError(ReplicationError):
    """A full batch of rows shares the cursor watermark."""
    pass
