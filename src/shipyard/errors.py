"""Domain exceptions for the orchestration core.

Every error carries a stable machine-checkable ``code`` in addition to a
human message. The API layer maps the classes to HTTP status codes.
"""


class ShipyardError(Exception):
    """Base exception for all Shipyard errors."""

    code = "shipyard_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}


class NotFoundError(ShipyardError):
    """Referenced entity is absent or not owned by the claimed organization."""

    code = "not_found"

    def __init__(self, resource: str, identifier: str, **details: object) -> None:
        super().__init__(
            f"{resource} not found: {identifier}",
            details={"resource": resource, "identifier": identifier, **details},
        )


class UnauthorizedError(ShipyardError):
    """Token missing, expired, badly signed, or scoped to another resource."""

    code = "unauthorized"


class ConflictError(ShipyardError):
    """The operation conflicts with the current persisted state."""

    code = "conflict"


class UpstreamError(ShipyardError):
    """An external system (orchestrator, object store, runtime) failed.

    Possibly transient and safe to retry explicitly.
    """

    code = "upstream_failure"


class ActivationFailedError(UpstreamError):
    """The installation row was saved but the runtime push failed."""

    code = "activation_failed"

    def __init__(self, message: str, *, installation: object, **details: object) -> None:
        super().__init__(message, details={"installation_saved": True, **details})
        self.installation = installation
