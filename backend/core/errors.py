"""Exception taxonomy for the logistics decision engine."""


class LogisticsAiError(Exception):
    """Base class for every error raised by the engine."""


class FeatureDisabledError(LogisticsAiError):
    """The tenant's settings or plan do not allow the requested feature."""

    def __init__(self, tenant_id: str, feature: str):
        self.tenant_id = tenant_id
        self.feature = feature
        super().__init__(f"{feature} is disabled for tenant {tenant_id}")


class InsufficientDatasetError(LogisticsAiError):
    """The tenant does not have enough delivery data for AI output."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Insufficient delivery data for tenant {tenant_id}")


class DeadlineExceeded(LogisticsAiError):
    """A bounded operation did not finish inside its deadline."""

    def __init__(self, operation: str, deadline_ms: int):
        self.operation = operation
        self.deadline_ms = deadline_ms
        super().__init__(f"Operation {operation} timed out after {deadline_ms}ms")


class InvalidSuggestionTransition(LogisticsAiError):
    """A route suggestion cannot move to the requested status."""

    def __init__(self, suggestion_id: str, current: str, target: str):
        self.suggestion_id = suggestion_id
        self.current = current
        self.target = target
        super().__init__(f"Suggestion {suggestion_id} cannot move from {current} to {target}")


class SettingsValidationError(LogisticsAiError):
    """A settings update payload was rejected."""
