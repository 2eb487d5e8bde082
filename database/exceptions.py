"""Database exceptions."""

class DatabaseError(Exception):
    """Base class for database errors."""
    pass

class DatabaseSchemaError(DatabaseError):
    """Raised when the schema cannot be loaded or migrated."""
    pass

class StoreError(DatabaseError):
    """Raised when the store rejects or cannot complete an operation."""
    pass
