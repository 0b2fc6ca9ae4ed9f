from typing import Optional


class StackError(Exception):
    """Base class for all errors raised while planning or reconciling a stack.

    Every error carries the logical id of the offending resource (if any) and the operation
    that failed, e.g. ``create``, ``delete`` or ``resolve``.
    """

    def __init__(
        self,
        message: str,
        logical_resource_id: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.logical_resource_id = logical_resource_id
        self.operation = operation

    def __str__(self):
        if self.logical_resource_id:
            return f"{self.message} (resource: {self.logical_resource_id}, operation: {self.operation})"
        return self.message


class PreflightError(StackError):
    """Raised before any provider is called; the stack is left untouched."""


class InvalidTemplateError(PreflightError):
    pass


class InvalidParameterError(PreflightError):
    def __init__(self, message: str, parameter_name: Optional[str] = None):
        super().__init__(message, operation="validate_parameters")
        self.parameter_name = parameter_name


class MappingKeyNotFoundError(PreflightError):
    def __init__(
        self,
        message: str,
        mapping_name: str,
        key: str,
        logical_resource_id: Optional[str] = None,
    ):
        super().__init__(message, logical_resource_id, operation="find_in_map")
        self.mapping_name = mapping_name
        self.key = key


class ConditionCycleError(PreflightError):
    def __init__(self, conditions: list[str]):
        super().__init__(
            f"Circular dependency between conditions: {' -> '.join(conditions)}",
            operation="evaluate_conditions",
        )
        self.conditions = conditions


class CycleDetectedError(PreflightError):
    def __init__(self, resources: list[str]):
        super().__init__(
            f"Circular dependency between resources: {sorted(resources)}",
            operation="build_graph",
        )
        self.resources = resources


class ProviderError(StackError):
    pass


class ProviderTransientError(ProviderError):
    """A failure that may succeed when retried, e.g. throttling or a timeout."""


class ProviderFatalError(ProviderError):
    """A failure that will not go away by retrying, e.g. a validation or permission error."""


class ResourceNotFound(ProviderError):
    """Raised by providers when a physical resource does not exist (anymore)."""


class NoResourceProvider(Exception):
    pass


class RollbackFailedError(StackError):
    def __init__(self, failures: list[StackError]):
        names = ", ".join(f.logical_resource_id or "?" for f in failures)
        super().__init__(f"Rollback failed for resources: {names}", operation="rollback")
        self.failures = failures


class StackNotFoundError(StackError):
    def __init__(self, stack_name: str):
        super().__init__(f"Stack with id {stack_name} does not exist", operation="describe")
        self.stack_name = stack_name
