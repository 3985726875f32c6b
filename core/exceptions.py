# core/exceptions.py
"""
Error taxonomy for the web2md service.

Every error carries a machine-readable ``code``, the HTTP status it maps to,
and whether it is worth retrying inside a stage.  ``to_dict`` renders the
JSON body returned by the API exception handlers.
"""

from typing import Any, Dict, List, Optional


class Web2MdException(Exception):
    code = "WEB2MD_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "status": self.status_code,
        }
        if self.details:
            error["details"] = self.details
        return {"error": error}


# ----------------------------------------------------------------------
# Input validation
# ----------------------------------------------------------------------
class InvalidUrl(Web2MdException):
    code = "INVALID_URL"
    status_code = 400


class UnsupportedScheme(InvalidUrl):
    code = "UNSUPPORTED_SCHEME"


class ValidationError(Web2MdException):
    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(self, errors: List[Any], message: str = "Request validation failed"):
        super().__init__(message, details={"errors": errors})
        self.errors = errors


# ----------------------------------------------------------------------
# Fetching
# ----------------------------------------------------------------------
class PrivateAddressBlocked(Web2MdException):
    code = "PRIVATE_ADDRESS_BLOCKED"
    status_code = 403


class DnsResolutionFailed(Web2MdException):
    code = "DNS_RESOLUTION_FAILED"
    status_code = 502


class FetchTimeout(Web2MdException):
    code = "TIMEOUT"
    status_code = 504
    retryable = True


class NetworkError(Web2MdException):
    code = "NETWORK_ERROR"
    status_code = 502
    retryable = True


class ResponseTooLarge(Web2MdException):
    code = "RESPONSE_TOO_LARGE"
    status_code = 413


class TooManyRedirects(Web2MdException):
    code = "TOO_MANY_REDIRECTS"
    status_code = 502


# ----------------------------------------------------------------------
# Pipeline
# ----------------------------------------------------------------------
class ExtractionFailed(Web2MdException):
    code = "EXTRACTION_FAILED"
    status_code = 502


class EngineUnavailable(Web2MdException):
    code = "ENGINE_UNAVAILABLE"
    status_code = 503


class AllStagesFailed(Web2MdException):
    code = "ALL_STAGES_FAILED"
    status_code = 502

    def __init__(self, message: str, attempts: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message, details={"attempts": attempts or []})
        self.attempts = attempts or []


# ----------------------------------------------------------------------
# Boundary / persistence
# ----------------------------------------------------------------------
class RateLimited(Web2MdException):
    code = "RATE_LIMITED"
    status_code = 429

    def __init__(self, retry_after: int, message: str = "Too many requests, slow down."):
        super().__init__(message, details={"retryAfter": retry_after})
        self.retry_after = retry_after


class PersistenceError(Web2MdException):
    code = "PERSISTENCE_ERROR"
    status_code = 503
