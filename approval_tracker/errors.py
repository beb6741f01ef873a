"""Typed errors raised by the approval core and the CRUD services."""

from typing import Any, Optional


class ServiceError(Exception):
    """Base service error with an HTTP status code and a stable error code."""

    status_code = 400
    code = "service_error"

    def __init__(self, message: str, meta: Optional[dict[str, Any]] = None):
        self.message = message
        self.meta = meta or {}
        super().__init__(message)


class InvalidConfiguration(ServiceError):
    """Bad approver list, ordering or mode at setup time."""

    status_code = 400
    code = "invalid_configuration"


class NotFound(ServiceError):
    status_code = 404
    code = "not_found"


class PermissionDenied(ServiceError):
    status_code = 403
    code = "permission_denied"


class NotAnApprover(ServiceError):
    """The acting user has no decision entry in the round."""

    status_code = 403
    code = "not_an_approver"


class OutOfTurn(ServiceError):
    """A sequential approver tried to decide before everyone ahead of them."""

    status_code = 409
    code = "out_of_turn"


class NotYourTurn(OutOfTurn):
    code = "not_your_turn"


class AlreadyDecided(ServiceError):
    """The decision entry has left PENDING; decisions are immutable."""

    status_code = 409
    code = "already_decided"


class RoundClosed(AlreadyDecided):
    """The round is resolved and accepts no further decisions."""

    code = "round_closed"


class Conflict(ServiceError):
    """A concurrent update won the race; the caller may retry."""

    status_code = 409
    code = "conflict"
