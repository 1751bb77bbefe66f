"""Errors raised by the staging service to its callers."""


class StagingRequestError(ValueError):
    """The request itself is invalid (bad room type, style, image, ...)."""


class JobNotFoundError(LookupError):
    """Unknown job id, or a job owned by another user."""


class UnknownProviderError(LookupError):
    """A webhook arrived for a provider name that is not registered."""


class WebhookAuthError(PermissionError):
    """A webhook failed signature verification."""
