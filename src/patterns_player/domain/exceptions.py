"""Exceptions for music resolution, authorization and listen delivery."""

from typing import Optional


class PlayerError(Exception):
    """Base exception for player engine operations."""

    pass


class InvalidTrackError(PlayerError):
    """Raised when a track lacks the identity or collection data an operation needs."""

    pass


class MusicSourceError(PlayerError):
    """Base exception for music source resolution failures."""

    pass


class AuthExpiredError(MusicSourceError):
    """Raised when the session or API key was rejected (HTTP 401).

    ``retryable`` is True when the caller may refresh the authorization and
    try once more; it is False on the second attempt to stop retry loops.
    """

    def __init__(self, message: str = "Authorization expired", retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class ForbiddenError(MusicSourceError):
    """Raised when music generation is not allowed for this user (HTTP 403)."""

    pass


class RateLimitedError(MusicSourceError):
    """Raised when the music server rate limits the request (HTTP 429)."""

    pass


class ServiceUnavailableError(MusicSourceError):
    """Raised when the music server is temporarily unavailable (HTTP 503)."""

    pass


class GenerationTimeoutError(MusicSourceError):
    """Raised when music generation does not finish within its timeout."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Music generation timed out after {timeout:g}s")


class ServerError(MusicSourceError):
    """Raised for any other non-success response."""

    def __init__(self, status: int, detail: str = ""):
        self.status = status
        self.detail = detail
        message = f"Server error ({status})"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class NetworkError(MusicSourceError):
    """Raised when the request could not reach the server."""

    pass


class AudioOutputError(PlayerError):
    """Raised when the audio output cannot load or play a resource."""

    pass


class DeliveryError(PlayerError):
    """Raised when a listen record could not be delivered."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


def classify_status(status: int, detail: str = "", retryable: bool = True) -> MusicSourceError:
    """Map a non-success HTTP status to the matching exception.

    Args:
        status: HTTP status code
        detail: Response body excerpt for ServerError
        retryable: Whether an AuthExpiredError may be retried after refresh

    Returns:
        Exception instance (not raised)
    """
    if status == 401:
        return AuthExpiredError(retryable=retryable)
    if status == 403:
        return ForbiddenError("No access to music generation")
    if status == 429:
        return RateLimitedError("Too many requests, try again later")
    if status == 503:
        return ServiceUnavailableError("Music generation service is temporarily unavailable")
    return ServerError(status, detail)
