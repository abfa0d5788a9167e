# src/routine_audit/core/errors.py

"""
Error taxonomy.

- ValidationError: bad input or a forbidden transition; raised before any state change.
- PersistenceError: the gateway failed to read or write.
- AuthenticationError / AuthorizationError: login and role checks.

Everything derives from AuditError so connectors can catch one type and show the message.
"""

from __future__ import annotations


class AuditError(Exception):
    """Base class for errors that are safe to show to the user."""


class ValidationError(AuditError, ValueError):
    pass


class AssignmentLockedError(ValidationError):
    """The employee already submitted this assignment and it was not reopened."""


class InvalidTransitionError(ValidationError):
    pass


class PersistenceError(AuditError):
    pass


class AuthenticationError(AuditError):
    pass


class AccountDisabledError(AuthenticationError):
    pass


class AuthorizationError(AuditError):
    pass
