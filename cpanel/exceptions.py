"""
Exceptions raised by the request pipeline and its collaborators
"""
from typing import Optional
from urllib.parse import urlencode


class ConsoleException(Exception):
    """Base exception for all control panel errors"""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API responses"""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details
        }

# ============================================================
# Degraded dependencies
# ============================================================

class CacheError(ConsoleException):
    """Redis connection or operation error"""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="CACHE_ERROR")


class PlatformAPIError(ConsoleException):
    """Chat platform REST API error"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(
            message=message,
            error_code="PLATFORM_API_ERROR",
            details={"status_code": status_code} if status_code else {}
        )
        self.status_code = status_code


class BotRestError(ConsoleException):
    """Bot REST sidecar unavailable or returned an error"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(
            message=message,
            error_code="BOTREST_ERROR",
            details={"status_code": status_code} if status_code else {}
        )
        self.status_code = status_code

# ============================================================
# Request flow
# ============================================================

class RedirectError(ConsoleException):
    """Abort the request and send the browser back to the index with an error code"""

    def __init__(self, code: str, location: str = "/", param: str = "err"):
        super().__init__(
            message=f"Redirecting with {param}={code}",
            error_code="REDIRECT",
            details={param: code}
        )
        self.code = code
        self.location = location
        self.param = param

    @property
    def url(self) -> str:
        return f"{self.location}?{urlencode({self.param: self.code})}"


class SessionRequiredError(RedirectError):
    """Protected page requested without a session"""

    def __init__(self):
        super().__init__("No session", param="error")


class FormParseError(ConsoleException):
    """The request body could not be parsed as a form at all"""

    def __init__(self, message: str = "Malformed form body"):
        super().__init__(message=message, error_code="FORM_PARSE_ERROR")


class PublicError(ConsoleException):
    """
    Error whose message is safe to show to the user verbatim

    The parts are joined without a separator:
        PublicError("Max ", 10, " commands") -> "Max 10 commands"
    """

    def __init__(self, *parts):
        super().__init__(message="".join(str(p) for p in parts), error_code="PUBLIC_ERROR")
