# stickershop/models/result.py
from enum import Enum
from typing import Generic, Optional, TypeVar
from .base import ApiModel

T = TypeVar("T")

class ErrorKind(str, Enum):
    NOT_CONFIGURED = "not_configured"
    NOT_FOUND = "not_found"
    VALIDATION_FAILED = "validation_failed"
    UPSTREAM_FAILURE = "upstream_failure"

class ServiceError(Exception):
    """Base error raised by services; carries an ErrorKind"""
    kind: ErrorKind = ErrorKind.UPSTREAM_FAILURE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

class NotConfigured(ServiceError):
    kind = ErrorKind.NOT_CONFIGURED

class NotFound(ServiceError):
    kind = ErrorKind.NOT_FOUND

class ValidationFailed(ServiceError):
    kind = ErrorKind.VALIDATION_FAILED

class UpstreamFailure(ServiceError):
    kind = ErrorKind.UPSTREAM_FAILURE

class Result(ApiModel, Generic[T]):
    """Response envelope shared by every mutation"""
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def ok(cls, data: Optional[T] = None) -> "Result[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: ServiceError) -> "Result[T]":
        return cls(success=False, error=error.message, error_kind=error.kind)
