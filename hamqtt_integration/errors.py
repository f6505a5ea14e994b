"""Exception types raised by hamqtt_integration."""


class IntegrationError(Exception):
    """Base class for all library errors."""


class SchemaError(IntegrationError):
    """A discovery document is malformed."""


class PublishError(IntegrationError):
    """A message could not be handed to the broker.

    Raised when there is no active connection or when the transport
    rejected the send.
    """


class DuplicateTriggerError(IntegrationError):
    """Two integrations claimed the same subscription topic."""


class ScheduleParseError(IntegrationError):
    """A cron expression could not be parsed."""


class ValidationError(IntegrationError):
    """A required configuration value is missing or invalid."""

    def __init__(self, field: str, message: str = ""):
        self.field = field
        super().__init__(message or f"{field} must be set!")
