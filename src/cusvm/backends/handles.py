"""Opaque handles representing the kernel matrix and preconditioners.

The solver never indexes a handle. It passes handles back to the backend
that created them, which is the only component that knows how the entries
are stored. A handle owns its backend buffers until :meth:`release` is
called, which the context-manager protocol does on exit.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import attrs
from attrs import field

from cusvm.exceptions import PreconditionError
from cusvm.parameter import Parameter, PreconditionerType, SolverType


@attrs.define(eq=False)
class MatrixHandle:
    """Common part of all handles.

    Attributes
    ----------
    backend : str
        Name of the backend that created the handle.
    num_rows : int
        Order of the square operator.
    """

    backend: str
    num_rows: int
    _released: bool = field(default=False, init=False)

    @property
    def released(self) -> bool:
        return self._released

    def check_alive(self) -> None:
        if self._released:
            raise PreconditionError(
                f"{type(self).__name__} has already been released!"
            )

    def _free(self) -> None:
        """Drop references to backend buffers."""

    def release(self) -> None:
        """Free the backend buffers; further use is a precondition error."""
        if not self._released:
            self._free()
            self._released = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


@attrs.define(eq=False)
class KernelMatrixHandle(MatrixHandle, ABC):
    """Abstract handle representing the reduced kernel matrix ``A``."""

    @property
    @abstractmethod
    def solver(self) -> SolverType:
        """Strategy the handle was assembled for."""


@attrs.define(eq=False)
class ExplicitKernelMatrix(KernelMatrixHandle):
    """Materialized kernel matrix in packed upper-triangular storage.

    Attributes
    ----------
    packed : array
        Backend buffer of ``packed_size(num_rows, padding)`` elements.
    padding : int
        Row padding used by the packed index formula.
    """

    packed: Any = field(default=None, repr=False)
    padding: int = 0

    @classmethod
    def from_dense(cls, backend, dense) -> "ExplicitKernelMatrix":
        """Create a handle on ``backend`` from a known symmetric matrix."""
        return backend.kernel_matrix_from_dense(dense)

    @property
    def solver(self) -> SolverType:
        return SolverType.cg_explicit

    def _free(self) -> None:
        self.packed = None


@attrs.define(eq=False)
class ImplicitKernelMatrix(KernelMatrixHandle):
    """Matrix-free kernel matrix, entries are recomputed on every use.

    Attributes
    ----------
    data : array
        Backend buffer of all data points, including the reduction anchor.
    num_features : int
        Number of features per data point.
    q : array
        Backend buffer of the dimensional reduction vector.
    QA_cost : float
        Scalar of the dimensional reduction.
    cost : float
        Value added to the diagonal, ``1 / C``.
    params : Parameter
        Kernel parameters the entries are computed with.
    """

    data: Any = field(default=None, repr=False)
    num_features: int = 0
    q: Any = field(default=None, repr=False)
    QA_cost: float = 0.0
    cost: float = 0.0
    params: Optional[Parameter] = None

    @property
    def solver(self) -> SolverType:
        return SolverType.cg_implicit

    def _free(self) -> None:
        self.data = None
        self.q = None


@attrs.define(eq=False)
class PreconditionerHandle(MatrixHandle):
    """Approximate inverse ``M`` of a kernel matrix.

    Attributes
    ----------
    kind : PreconditionerType
        Which preconditioner this handle applies.
    diagonal : array or None
        Backend buffer of the kernel matrix diagonal (jacobi).
    factor : array or None
        Backend buffer of the packed upper Cholesky factor ``U``
        (cholesky).
    padding : int
        Row padding of ``factor``.
    """

    kind: PreconditionerType = PreconditionerType.none
    diagonal: Any = field(default=None, repr=False)
    factor: Any = field(default=None, repr=False)
    padding: int = 0

    def _free(self) -> None:
        self.diagonal = None
        self.factor = None
