# custom exceptions for the scan pipeline

from enum import Enum
from typing import Optional, Dict, Any


# main class, every error we send back derives from it

class GradeScanError(Exception):

    def __init__(
        self,
        message: str,
        error_code: str = "SCAN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

# file size exceeds
class FileTooLargeError(GradeScanError):

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="FILE_TOO_LARGE"
        )

# when file type does not meet our defined types
class InvalidFileTypeError(GradeScanError):

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="INVALID_FILE_TYPE"
        )

# errors occurring during file processing
class FileProcessingError(GradeScanError):

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="FILE_PROCESSING_ERROR"
        )


class ModelErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    BLOCKED = "blocked"
    TRANSPORT = "transport"
    UNKNOWN = "unknown"

# vision model call failed, kind is decided once where the call is made

class ModelInvocationError(GradeScanError):

    def __init__(
        self,
        message: str,
        kind: ModelErrorKind = ModelErrorKind.UNKNOWN,
        details: Optional[Dict[str, Any]] = None
    ):
        self.kind = kind
        super().__init__(
            message=message,
            error_code=f"MODEL_{kind.name}",
            details=details
        )

# model could not be configured (no key, sdk refused the client)

class LLMConnectionError(GradeScanError):

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="LLM_CONNECTION_ERROR"
        )

# every model path and the manual stub failed

class ScanFailedError(GradeScanError):

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="SCAN_FAILED",
            details=details
        )

# this one helps for only validation error purposes

class ValidationError(GradeScanError):

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details=details
        )

# key-value store or record creation failed

class StorageError(GradeScanError):

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="STORAGE_ERROR",
            details=details
        )
