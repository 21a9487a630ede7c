"""
Standin Error Kinds

Exceptions raised by the expectation engine and its collaborators.

Only configuration and user-callback failures are exceptions. An unmatched
request and a failed verification are ordinary results (see
``DispatchOutcome`` and ``VerificationResult``).
"""

from typing import Optional


class StandinError(Exception):
    """Base class for all standin errors."""


class ConfigurationError(StandinError):
    """
    The mock was configured in a way that cannot produce a response.

    Raised when a response is built, not when the expectation is registered,
    since codecs may be registered after expectations.
    """


class CodecNotFoundError(ConfigurationError):
    """No encoder or decoder is registered for a content type."""

    def __init__(self, kind: str, content_type: Optional[str]):
        self.kind = kind
        self.content_type = content_type
        super().__init__(f"No {kind} registered for content type: {content_type!r}")


class CodecError(StandinError):
    """A registered codec failed on its input."""

    def __init__(self, content_type: str, cause: Exception):
        self.content_type = content_type
        self.cause = cause
        super().__init__(f"{self.__class__.__name__} for {content_type}: {cause}")


class DecodeError(CodecError):
    """Request body could not be decoded."""


class EncodeError(CodecError):
    """Response body could not be encoded."""


class UserResponseError(StandinError):
    """An exception escaped a caller-supplied response function."""

    def __init__(self, description: str, cause: BaseException):
        self.description = description
        self.cause = cause
        super().__init__(f"Response function for [{description}] failed: {cause!r}")


class ExpectationFileError(StandinError):
    """A declarative expectation file is malformed."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")
