"""Custom exceptions for kubeception.

This module defines the exception hierarchy used by the reconciliation
engine to tell expected, transient and hard failures apart.
"""

from kubernetes.client.exceptions import ApiException

_HTTP_NOT_FOUND = 404
_HTTP_CONFLICT = 409


class ControllerError(Exception):
    """Base exception for all kubeception errors.

    All custom exceptions in this package inherit from this class,
    allowing callers to catch all controller errors with a single
    except clause if desired.
    """

    pass


class ClusterConnectionError(ControllerError):
    """Raised when connection to the Kubernetes API server fails.

    This can occur when:
    - The kubeconfig is invalid or missing
    - The API server is unreachable
    - Authentication fails
    """

    pass


class ConfigurationError(ControllerError):
    """Raised when the controller configuration file is invalid."""

    pass


class NotFoundError(ControllerError):
    """Raised by a lister when the requested object is not cached.

    This is the only expected negative result of a cache read and is
    interpreted by the ensurers as "must create".
    """

    def __init__(self, kind: str, name: str, namespace: str = "") -> None:
        self.kind = kind
        self.name = name
        self.namespace = namespace
        target = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {target!r} not found")


class AddressNotYetAvailableError(ControllerError):
    """Raised when the external endpoint has no load balancer address yet.

    This is a transient condition: the key is requeued with backoff until
    the address appears.
    """

    pass


class DependencyMissingError(ControllerError):
    """Raised when a resource is requested before the resource it derives from.

    For example, a TLS secret cannot be created before the root CA secret
    exists in the same namespace.
    """

    pass


class CertificateError(ControllerError):
    """Raised when stored certificate material cannot be parsed."""

    pass


class PatchConflictError(ControllerError):
    """Raised when a three-way merge patch would change a field two ways."""

    pass


class ReconcileStepError(ControllerError):
    """Raised by the orchestrator when one ensure step fails.

    Attributes:
        step: Human readable description of the failed step.
        cause: The underlying exception.

    """

    def __init__(self, step: str, cause: BaseException) -> None:
        self.step = step
        self.cause = cause
        super().__init__(f"failed to ensure that the {step} exists: {cause}")

    @property
    def transient(self) -> bool:
        """Whether the failure is expected to resolve itself given time."""
        return isinstance(self.cause, AddressNotYetAvailableError)


def is_not_found(exc: BaseException) -> bool:
    """Return True if *exc* is an API or cache "not found" error."""
    if isinstance(exc, NotFoundError):
        return True
    return isinstance(exc, ApiException) and exc.status == _HTTP_NOT_FOUND


def is_already_exists(exc: BaseException) -> bool:
    """Return True if *exc* is an API "already exists" conflict."""
    return isinstance(exc, ApiException) and exc.status == _HTTP_CONFLICT
