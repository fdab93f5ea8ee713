"""
Authorization Errors

Two families of failure:
- Validation errors: field-coded, returned as lists, never raised
- Exceptions: infrastructure failures and rejected tokens

A denied decision is never an exception.
"""

from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class FieldError:
    """A single field-coded validation problem"""
    field: str
    code: str
    message: str

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        return {"field": self.field, "code": self.code, "message": self.message}


class ValidationErrors(List[FieldError]):
    """Ordered collection of field errors returned by validators."""

    def has_errors(self) -> bool:
        return len(self) > 0

    def codes(self) -> List[str]:
        return [e.code for e in self]

    def fields(self) -> List[str]:
        return [e.field for e in self]

    def __str__(self) -> str:
        if not self:
            return "validation failed"
        return str(self[0])


class AuthzError(Exception):
    """Base class for authorization engine exceptions"""


class EvaluationUnavailable(AuthzError):
    """
    The decision could not be made.

    Raised when the grant/role store or a remote authorization service
    fails. Callers must not treat this as "denied".
    """


class InvalidTokenError(AuthzError):
    """Token failed format, encoding or signature checks."""

    def __init__(self, message: str = "invalid token"):
        super().__init__(message)


class TokenRejectedError(InvalidTokenError):
    """Token is authentic but its claims are not acceptable here."""

    def __init__(self, errors: ValidationErrors):
        super().__init__(f"token rejected: {errors}")
        self.errors = errors


class ConfigurationError(AuthzError):
    """Invalid or incomplete configuration"""
