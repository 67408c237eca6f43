"""
Error Handling - Centralized error policies and custom exceptions.

This module defines how different error types should be handled throughout
the indexing and search pipeline, ensuring graceful degradation and proper
logging.
"""

import logging
from enum import Enum, auto
from dataclasses import dataclass
from typing import Optional
from pathlib import Path


logger = logging.getLogger(__name__)


class ErrorAction(Enum):
    """What to do when an error occurs."""
    SKIP = auto()           # Skip this item, continue processing
    FALLBACK = auto()       # Use the offline/deterministic variant
    ABORT = auto()          # Stop the entire pipeline


@dataclass
class ErrorPolicy:
    """Policy for handling a specific error type."""
    action: ErrorAction
    log_level: int
    message_template: str = "{file}: {error}"


class DeskIndexError(Exception):
    """Base exception for the knowledge base."""
    pass


class IndexingError(DeskIndexError):
    """Error while indexing a single file."""
    pass


class EmbeddingError(DeskIndexError):
    """Error during embedding generation."""
    pass


class StoreError(DeskIndexError):
    """Error during metadata or vector store operations."""
    pass


class StoreInitError(StoreError):
    """No store could be opened; nothing can be indexed or searched."""
    pass


class ResponderError(DeskIndexError):
    """The generative backend failed to produce an answer."""
    pass


# Error type to policy mapping (first isinstance match wins)
ERROR_POLICIES: dict[type, ErrorPolicy] = {
    PermissionError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Permission denied: {file}"
    ),
    FileNotFoundError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="File not found (possibly deleted): {file}"
    ),
    UnicodeDecodeError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="Cannot decode file (binary?): {file}"
    ),
    IsADirectoryError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="Expected file, got directory: {file}"
    ),
    OSError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="OS error reading file: {file} - {error}"
    ),
    IndexingError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Indexing failed for {file}: {error}"
    ),
    EmbeddingError: ErrorPolicy(
        action=ErrorAction.FALLBACK,
        log_level=logging.DEBUG,
        message_template="Embedding backend failed for {file}: {error}"
    ),
    StoreInitError: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="No store available: {error}"
    ),
    StoreError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.ERROR,
        message_template="Store write failed for {file}: {error}"
    ),
    ResponderError: ErrorPolicy(
        action=ErrorAction.FALLBACK,
        log_level=logging.WARNING,
        message_template="Responder failed: {error}"
    ),
}


def handle_error(
    error: Exception,
    file_path: Optional[Path] = None,
    context: str = ""
) -> ErrorAction:
    """
    Handle an error according to the defined policies.

    Args:
        error: The exception that occurred
        file_path: Path to the file being processed (if applicable)
        context: Additional context for logging

    Returns:
        The action to take (SKIP, FALLBACK, ABORT)
    """
    # Look up policy for this error type (or its base classes)
    policy = None
    for error_type, p in ERROR_POLICIES.items():
        if isinstance(error, error_type):
            policy = p
            break

    # Default policy for unknown errors
    if policy is None:
        policy = ErrorPolicy(
            action=ErrorAction.SKIP,
            log_level=logging.ERROR,
            message_template="Unexpected error: {file} - {error}"
        )

    # Format and log the message
    file_str = str(file_path) if file_path else "<unknown>"
    message = policy.message_template.format(file=file_str, error=str(error))
    if context:
        message = f"[{context}] {message}"

    logger.log(policy.log_level, message)

    return policy.action
