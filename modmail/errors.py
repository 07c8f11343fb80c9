class ModmailError(Exception):
    """Base class for errors raised by the relay."""


class ValidationError(ModmailError):
    """A command argument could not be parsed."""


class NotFoundError(ModmailError):
    """A lookup found nothing to act on."""


class ExternalServiceError(ModmailError):
    """A Discord call (send, delete, channel creation) failed."""


class StoreError(ModmailError):
    """A database call failed."""
