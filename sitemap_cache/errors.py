"""
Error Handling - Centralized error policies and custom exceptions.

This module defines how different error types are handled throughout the
import pipeline: failures of a single child sitemap are skipped, anything
else aborts the run.
"""

import logging
import sqlite3
from enum import Enum, auto
from dataclasses import dataclass
from typing import Optional


logger = logging.getLogger(__name__)


class ErrorAction(Enum):
    """What to do when an error occurs."""
    SKIP = auto()           # Drop this location, keep the batch going
    ABORT = auto()          # Stop the entire import run


@dataclass
class ErrorPolicy:
    """Policy for handling a specific error type."""
    action: ErrorAction
    log_level: int
    message_template: str = "{location}: {error}"


class SitemapCacheError(Exception):
    """Base exception for sitemap cache errors."""
    pass


class NetworkFailure(SitemapCacheError):
    """Non-success response or transport failure from an upstream fetch."""
    def __init__(self, message: str, url: Optional[str] = None, status: Optional[int] = None):
        self.url = url
        self.status = status
        super().__init__(message)


class UnrecognizedFormat(SitemapCacheError):
    """Document is neither a <urlset> nor a <sitemapindex>."""
    def __init__(self, url: Optional[str] = None):
        self.url = url
        super().__init__("Unrecognized sitemap format")


class InvalidUrl(SitemapCacheError):
    """Location is not an absolute http(s) URL."""
    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Invalid URL: {url!r}")


class StoreFailure(SitemapCacheError):
    """A read or write transaction against the local store failed."""
    pass


class ImportCancelled(SitemapCacheError):
    """Run was cancelled cooperatively. Never reported as an error event."""
    pass


# Error type to policy mapping. Inside a batch every failure is skipped;
# these policies decide the log level for each kind.
BATCH_POLICIES: dict[type, ErrorPolicy] = {
    NetworkFailure: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Fetch failed, dropping child sitemap: {location} - {error}"
    ),
    UnrecognizedFormat: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Not a sitemap, dropping: {location}"
    ),
    InvalidUrl: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="Invalid child location: {location}"
    ),
}

# Outside a batch every failure aborts the run.
RUN_POLICIES: dict[type, ErrorPolicy] = {
    NetworkFailure: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="Import of {location} failed: {error}"
    ),
    UnrecognizedFormat: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="Import of {location} failed: {error}"
    ),
    StoreFailure: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="Store failure while importing {location}: {error}"
    ),
    sqlite3.Error: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="Store failure while importing {location}: {error}"
    ),
}


def handle_error(
    error: Exception,
    location: Optional[str] = None,
    context: str = "",
    policies: Optional[dict[type, ErrorPolicy]] = None,
) -> ErrorAction:
    """
    Handle an error according to the defined policies.

    Args:
        error: The exception that occurred
        location: Sitemap or root URL being processed (if applicable)
        context: Additional context for logging
        policies: Policy table to consult (default: BATCH_POLICIES)

    Returns:
        The action to take (SKIP or ABORT)
    """
    policies = BATCH_POLICIES if policies is None else policies

    # Look up policy for this error type (or its base classes)
    policy = None
    for error_type, p in policies.items():
        if isinstance(error, error_type):
            policy = p
            break

    # Default policy for unknown errors
    if policy is None:
        policy = ErrorPolicy(
            action=ErrorAction.SKIP if policies is BATCH_POLICIES else ErrorAction.ABORT,
            log_level=logging.ERROR,
            message_template="Unexpected error: {location} - {error}"
        )

    location_str = location or "<unknown>"
    message = policy.message_template.format(location=location_str, error=str(error))
    if context:
        message = f"[{context}] {message}"

    logger.log(policy.log_level, message)

    return policy.action


def error_message(error: BaseException) -> str:
    """Human-readable message for an error event."""
    return str(error) or type(error).__name__
