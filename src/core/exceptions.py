"""Custom exceptions and error codes."""

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Standardized error codes for the API."""

    # Not found errors (404)
    TAG_NOT_FOUND = "TAG_NOT_FOUND"
    TAG_CONTENT_NOT_FOUND = "TAG_CONTENT_NOT_FOUND"
    NO_ACTIVE_AUTO_TAG = "NO_ACTIVE_AUTO_TAG"

    # Validation errors (400)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CIRCULAR_REFERENCE = "CIRCULAR_REFERENCE"
    INVALID_TAG_TYPE = "INVALID_TAG_TYPE"
    INVALID_TAG_STATE = "INVALID_TAG_STATE"

    # Conflict errors (409)
    CONFLICT = "CONFLICT"
    DUPLICATE_TAG_NUMBER = "DUPLICATE_TAG_NUMBER"
    TAG_NOT_EMPTY = "TAG_NOT_EMPTY"
    TAG_CONTENT_CONFLICT = "TAG_CONTENT_CONFLICT"

    # Rate limiting (429)
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Server errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        status_code: int = 400,
        details: Any | None = None,
    ) -> None:
        self.error_code = error_code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class TagNotFoundError(AppException):
    """Tag not found."""

    def __init__(self, tag_id: str) -> None:
        super().__init__(
            error_code=ErrorCode.TAG_NOT_FOUND,
            message=f"Tag not found: {tag_id}",
            status_code=404,
            details={"tag_id": tag_id},
        )


class TagContentNotFoundError(AppException):
    """A unit, item, indicator or nested tag is not placed in the given tag."""

    def __init__(self, tag_id: str, content_type: str, content_id: str) -> None:
        super().__init__(
            error_code=ErrorCode.TAG_CONTENT_NOT_FOUND,
            message=f"{content_type.capitalize()} {content_id} is not in tag {tag_id}",
            status_code=404,
            details={
                "tag_id": tag_id,
                "content_type": content_type,
                "content_id": content_id,
            },
        )


class NoActiveAutoTagError(AppException):
    """No reserved auto tag exists for the tag type."""

    def __init__(self, tag_type: str) -> None:
        super().__init__(
            error_code=ErrorCode.NO_ACTIVE_AUTO_TAG,
            message=f"No active auto tag found for type {tag_type}",
            status_code=404,
            details={"tag_type": tag_type},
        )


class CircularReferenceError(AppException):
    """Circular reference detected in hierarchy."""

    def __init__(self, message: str = "Circular reference detected") -> None:
        super().__init__(
            error_code=ErrorCode.CIRCULAR_REFERENCE,
            message=message,
            status_code=400,
        )


class InvalidTagTypeError(AppException):
    """Tag type is not allowed for the requested operation."""

    def __init__(self, tag_id: str, tag_type: str, expected: list[str]) -> None:
        super().__init__(
            error_code=ErrorCode.INVALID_TAG_TYPE,
            message=f"Tag {tag_id} of type {tag_type} is not valid here",
            status_code=400,
            details={"tag_id": tag_id, "tag_type": tag_type, "expected": expected},
        )


class InvalidTagStateError(AppException):
    """Tag cannot accept the requested content in its current state."""

    def __init__(self, tag_id: str, reason: str) -> None:
        super().__init__(
            error_code=ErrorCode.INVALID_TAG_STATE,
            message=f"Tag {tag_id} {reason}",
            status_code=400,
            details={"tag_id": tag_id},
        )


class DuplicateTagNumberError(AppException):
    """A tag with the same number already exists for the tag type."""

    def __init__(self, tag_number: int, tag_type: str) -> None:
        super().__init__(
            error_code=ErrorCode.DUPLICATE_TAG_NUMBER,
            message=f"Tag number {tag_number} already exists for type {tag_type}",
            status_code=409,
            details={"tag_number": tag_number, "tag_type": tag_type},
        )


class TagNotEmptyError(AppException):
    """Tag still has content."""

    def __init__(self, tag_id: str) -> None:
        super().__init__(
            error_code=ErrorCode.TAG_NOT_EMPTY,
            message=f"Tag {tag_id} is not empty",
            status_code=409,
            details={"tag_id": tag_id},
        )


class TagContentConflictError(AppException):
    """Content placement could not be committed."""

    def __init__(self, tag_id: str, content_type: str, content_id: str) -> None:
        super().__init__(
            error_code=ErrorCode.TAG_CONTENT_CONFLICT,
            message=f"Could not place {content_type} {content_id} in tag {tag_id}",
            status_code=409,
            details={
                "tag_id": tag_id,
                "content_type": content_type,
                "content_id": content_id,
            },
        )
