class ObjectNotFoundException(Exception):
    """Exception raised when an object with the specified identifier does not exist."""

    def __init__(self, message: str = "The requested object was not found."):
        super().__init__(message)


class ParameterCapacityExceededException(Exception):
    """
    Exception raised when a statement needs more bound parameters than the
    engine allows (SQLITE_LIMIT_VARIABLE_NUMBER, 999 by default).

    The statement is never sent to the engine. Split the operation into
    smaller batches (fewer IN-list values, fewer rows) and retry.
    """

    def __init__(
        self,
        message: str = "SQLITE_LIMIT_VARIABLE_NUMBER exceeded. (default value: 999)",
    ):
        super().__init__(message)


class InvalidConditionException(ValueError):
    """Exception raised when a condition document cannot be compiled."""

    def __init__(self, message: str = "Invalid condition document."):
        super().__init__(message)


class EntityDefinitionException(TypeError):
    """Exception raised when entity metadata is inconsistent."""

    def __init__(self, message: str = "Invalid entity definition."):
        super().__init__(message)
