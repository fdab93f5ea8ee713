"""
Scope Matching

A grant's scope is compared against the scope the caller requests.
Matching is one-directional: a global grant scope satisfies any request,
including a global one, while any other grant scope needs an exact
(type, id) match. A global request is therefore only met by global grants.
"""

from ...data.models.authz import GLOBAL_SCOPE_TYPE, Scope
from .errors import FieldError, ValidationErrors

GLOBAL_SCOPE = Scope(type=GLOBAL_SCOPE_TYPE, id="")


def scope_matches(grant_scope: Scope, requested_scope: Scope) -> bool:
    """True if a grant confined to grant_scope applies to requested_scope."""
    if grant_scope.type == GLOBAL_SCOPE_TYPE:
        return True
    return grant_scope.type == requested_scope.type and grant_scope.id == requested_scope.id


def validate_scope(scope: Scope) -> ValidationErrors:
    errors = ValidationErrors()

    if not scope.type:
        errors.append(FieldError("scope.type", "required", "Scope type is required"))
        return errors

    if scope.type == GLOBAL_SCOPE_TYPE:
        if scope.id:
            errors.append(FieldError(
                "scope.id", "invalid_for_global", "Global scope cannot have an ID"
            ))
    elif not scope.id:
        errors.append(FieldError(
            "scope.id", "required", "Scope ID is required for non-global scopes"
        ))

    return errors
