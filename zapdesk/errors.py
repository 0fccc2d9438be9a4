"""
Error taxonomy for the support console.

NotFoundError and ValidationError surface to the attendant console as explicit
failures. CollaboratorUnavailableError is raised by gateway and AI clients and
converted to degraded text or a deferred retry at the component boundary.
"""


class ConsoleError(Exception):
    """Base class for console errors."""


class NotFoundError(ConsoleError):
    """A session, queue entry or message needed by an action is absent."""

    def __init__(self, resource: str, key: str):
        self.resource = resource
        self.key = key
        super().__init__(f"{resource} {key} not found")


class ValidationError(ConsoleError):
    """Attendant input that cannot be applied."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)


class CollaboratorUnavailableError(ConsoleError):
    """Transport, LLM or transcription collaborator is down."""
