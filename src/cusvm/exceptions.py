"""Error types raised by cusvm.

Three families are distinguished:

* :class:`InvalidParameterError` for user supplied values that are outside
  their valid range. Raised at the API boundary before any backend work.
* :class:`PreconditionError` for violated structural preconditions such as
  empty inputs or shape and padding mismatches between cooperating
  matrices.
* :class:`BackendError` for failures reported by a compute backend. The
  backend's native diagnostic code and name are kept on the exception.

Numerical non-convergence of the CG solver is never an error.
"""

from typing import Optional


class InvalidParameterError(ValueError):
    """A parameter value is outside its valid range."""


class PreconditionError(AssertionError):
    """A structural precondition of an operation was violated."""


def check_precondition(condition: bool, message: str) -> None:
    """Raise :class:`PreconditionError` with ``message`` if not ``condition``.

    Unlike ``assert`` the check is kept when Python runs with ``-O``.
    """
    if not condition:
        raise PreconditionError(message)


class BackendError(RuntimeError):
    """Failure inside a compute backend.

    Parameters
    ----------
    message
        Human readable description.
    code
        Backend-native error code, if any.
    name
        Backend-native error name, if any.
    """

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        name: Optional[str] = None,
    ) -> None:
        self.message = message
        self.code = code
        self.name = name
        if code is not None or name is not None:
            text = f"{message} (code {code}: {name})"
        else:
            text = message
        super().__init__(text)


class UnsupportedBackendError(BackendError):
    """The requested target platform is not available."""


__all__ = [
    "BackendError",
    "InvalidParameterError",
    "PreconditionError",
    "UnsupportedBackendError",
    "check_precondition",
]
