"""
Error types and external-service failure classification.

Service failures never escape a turn; they are classified into a stable
category for logs and events, and the turn ends silently.
"""
import asyncio
from typing import Optional

import aiohttp
import openai


class VoiceBotError(Exception):
    """Base class for voice bot errors."""


class InvalidTransitionError(VoiceBotError):
    """A state machine was asked for a transition it does not allow."""

    def __init__(self, machine: str, current: str, target: str):
        super().__init__(f"{machine}: invalid transition {current} -> {target}")
        self.machine = machine
        self.current = current
        self.target = target


class SessionExistsError(VoiceBotError):
    """A channel session is already active for this room."""


class SessionNotFoundError(VoiceBotError):
    """No channel session is active for this room."""


class JoinTimeoutError(VoiceBotError):
    """The room connection was not ready within the join timeout."""


class ServiceError(VoiceBotError):
    """An external AI service call failed."""

    def __init__(self, service: str, message: str, category: Optional[str] = None):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.category = category


class ServiceErrorCategory:
    """Stable categories for external-service failures."""

    AUTH_FAILED = "service.auth_failed"
    RATE_LIMITED = "service.rate_limited"
    NETWORK_ERROR = "service.network_error"
    TIMEOUT = "service.timeout"
    BAD_REQUEST = "service.bad_request"
    EMPTY_RESPONSE = "service.empty_response"
    UNKNOWN_ERROR = "service.unknown_error"


def classify_service_error(error: BaseException) -> str:
    """
    Map an exception raised by an STT / LLM / TTS call to a category.

    SDK exception types are checked first, then the message text.
    """
    if isinstance(error, ServiceError) and error.category:
        return error.category

    if isinstance(error, (asyncio.TimeoutError, openai.APITimeoutError)):
        return ServiceErrorCategory.TIMEOUT
    if isinstance(error, openai.AuthenticationError):
        return ServiceErrorCategory.AUTH_FAILED
    if isinstance(error, openai.RateLimitError):
        return ServiceErrorCategory.RATE_LIMITED
    if isinstance(error, openai.BadRequestError):
        return ServiceErrorCategory.BAD_REQUEST
    if isinstance(error, (openai.APIConnectionError, aiohttp.ClientConnectionError)):
        return ServiceErrorCategory.NETWORK_ERROR

    error_str = str(error).lower()

    if "auth" in error_str or "unauthorized" in error_str or "401" in error_str:
        return ServiceErrorCategory.AUTH_FAILED
    if "rate limit" in error_str or "429" in error_str:
        return ServiceErrorCategory.RATE_LIMITED
    if "timeout" in error_str or "timed out" in error_str:
        return ServiceErrorCategory.TIMEOUT
    if "network" in error_str or "connection" in error_str:
        return ServiceErrorCategory.NETWORK_ERROR
    if "400" in error_str or "invalid" in error_str:
        return ServiceErrorCategory.BAD_REQUEST

    return ServiceErrorCategory.UNKNOWN_ERROR
