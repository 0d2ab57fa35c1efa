"""Service layer — gating logic over the DAOs."""


class ServiceError(Exception):
    """Base service exception; ``http_status`` is what the API answers with."""

    http_status = 500


class NotFoundError(ServiceError):
    """Repository, rule, branch protection or pull request does not exist."""

    http_status = 404


class ConflictError(ServiceError):
    """Request conflicts with current state (duplicate rule, gate already set)."""

    http_status = 409


class ValidationError(ServiceError):
    """Malformed input or a state transition the pull request cannot take."""

    http_status = 422
