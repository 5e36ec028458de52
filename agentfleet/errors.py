# agentfleet/errors.py
from enum import Enum
from typing import Optional

# Exchange error codes that mean the request was not authenticated.
AUTH_ERROR_CODES = frozenset({-1002, -1022, -2014, -2015})
TIMESTAMP_ERROR_CODE = -1021


class ErrorKind(str, Enum):
    """Tag attached to tick records that did not end in an order."""
    TRANSPORT = "transport"
    AUTH = "auth"
    APPLICATION = "application"
    INPUT = "input"
    RISK = "risk"


class AgentFleetError(Exception):
    """Base class for every error raised by the package."""


class ConfigurationError(AgentFleetError):
    pass


class ExchangeError(AgentFleetError):
    """
    A failed exchange call. `status` is the HTTP status (None when the
    request never got a response), `code` is the exchange error code.
    """
    error_kind = ErrorKind.APPLICATION

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[int] = None, kind: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.kind = kind

    def __str__(self):
        parts = [self.message]
        if self.status is not None:
            parts.append(f"status={self.status}")
        if self.code is not None:
            parts.append(f"code={self.code}")
        return " ".join(parts)


class TransportFault(ExchangeError):
    """Timeout, connection failure or a response that is not JSON."""
    error_kind = ErrorKind.TRANSPORT


class AuthFault(ExchangeError):
    """Signature rejected, key invalid or credentials missing. Fatal for a runner."""
    error_kind = ErrorKind.AUTH


class ApplicationFault(ExchangeError):
    """Well-formed exchange rejection (balance, precision, rate limit...)."""
    error_kind = ErrorKind.APPLICATION

    @property
    def is_timestamp_error(self) -> bool:
        return self.code == TIMESTAMP_ERROR_CODE


def classify_error_response(status: int, payload) -> ExchangeError:
    """Maps a non-2xx JSON response onto the fault hierarchy."""
    code = None
    msg = f"HTTP {status}"
    if isinstance(payload, dict):
        raw_code = payload.get("code")
        try:
            code = int(raw_code) if raw_code is not None else None
        except (TypeError, ValueError):
            code = None
        msg = payload.get("msg") or msg

    if status == 401 or code in AUTH_ERROR_CODES:
        return AuthFault(msg, status=status, code=code, kind="auth")
    return ApplicationFault(msg, status=status, code=code, kind="application")
