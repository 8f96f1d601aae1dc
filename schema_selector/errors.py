"""Exception definitions for the schema selection function."""


class SchemaSelectionError(Exception):
    """Base exception for all schema selection errors."""


class SchemaSourceError(SchemaSelectionError):
    """Raised when a schema source cannot be loaded.

    The engine never retries a failed load; retry policy belongs to the caller.
    """


class SchemaSourceNotFoundError(SchemaSourceError):
    """Raised when a definitions file, CRD document or cluster object is missing."""


class SchemaSourceParseError(SchemaSourceError):
    """Raised when a schema document is not valid JSON/YAML or has the wrong shape."""


class SchemaSourceConnectionError(SchemaSourceError):
    """Raised when the Kubernetes API server cannot be reached."""


class SchemaSourcePermissionError(SchemaSourceError):
    """Raised when the cluster rejects a schema request (401/403)."""


class InvalidCRDError(SchemaSourceParseError):
    """Raised when a document is not a usable CustomResourceDefinition."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Invalid CRD: {', '.join(errors)}")


class ResourceNotFoundError(SchemaSelectionError):
    """Raised when a resource key is not present in a loaded schema source."""
