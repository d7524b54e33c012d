"""Capability interface every compute backend implements.

:class:`Backend` holds the logic that is identical for all backends:
argument checking, resolution of the automatic solver strategy, and the
dispatch of the level-3 multiply to the kernel matrix or preconditioner
variant. Subclasses only provide the data-parallel primitives, the
``_``-prefixed abstract methods below, plus memory queries and transfers.
"""

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from cusvm._utils import PrecisionDType, enum_converter, precision_converter
from cusvm.backends.handles import (
    ExplicitKernelMatrix,
    ImplicitKernelMatrix,
    KernelMatrixHandle,
    MatrixHandle,
    PreconditionerHandle,
)
from cusvm.constants import PADDING_SIZE
from cusvm.exceptions import InvalidParameterError, check_precondition
from cusvm.matrix import (
    LayoutType,
    Matrix,
    check_same_padding,
    pack_upper,
    packed_index,
    packed_size,
)
from cusvm.parameter import Parameter, PreconditionerType, SolverType
from cusvm.time_logger import TimeLogger

_to_solver_type = enum_converter(SolverType)
_to_preconditioner_type = enum_converter(PreconditionerType)


class Backend(ABC):
    """Base class of the compute backends.

    Parameters
    ----------
    precision
        Floating point type of all buffers.
    mem_proportion
        Fraction of :meth:`available_memory` the explicit strategy may use
        when the solver type is automatic.
    logger
        Receives timing events and tracking entries.

    Attributes
    ----------
    name : str
        Short backend identifier, stored on every handle it creates.
    layout : LayoutType
        Preferred layout of the dense matrices passed to the backend.
    """

    name = "base"
    layout = LayoutType.aos

    def __init__(
        self,
        precision: PrecisionDType = np.float64,
        mem_proportion: float = 0.9,
        logger: Optional[TimeLogger] = None,
    ) -> None:
        if not 0.0 < mem_proportion <= 1.0:
            raise InvalidParameterError(
                f"mem_proportion must be in (0, 1], but is {mem_proportion}!"
            )
        self.precision = precision_converter(precision)
        self.mem_proportion = float(mem_proportion)
        self.logger = logger if logger is not None else TimeLogger(None)

    # ------------------------------------------------------------------ #
    #                      backend specific primitives                   #
    # ------------------------------------------------------------------ #
    @abstractmethod
    def available_memory(self) -> int:
        """Return the number of bytes the backend can still allocate."""

    @abstractmethod
    def _to_backend(self, array: np.ndarray):
        """Move a host array into backend memory."""

    @abstractmethod
    def _to_host(self, array) -> np.ndarray:
        """Return a host copy of a backend array."""

    @abstractmethod
    def _prepare_data(self, data: Matrix):
        """Return the data matrix in the backend's preferred form."""

    @abstractmethod
    def _assemble_explicit(
        self, data, num_rows, num_features, q, QA_cost, cost, params,
        padding,
    ):
        """Return the packed reduced kernel matrix as a backend buffer."""

    @abstractmethod
    def _symm_explicit(
        self, alpha, handle: ExplicitKernelMatrix, B: Matrix, beta,
        C: Matrix,
    ) -> None:
        """``C = alpha * A * B + beta * C`` for a packed ``A``."""

    @abstractmethod
    def _symm_implicit(
        self, alpha, handle: ImplicitKernelMatrix, B: Matrix, beta,
        C: Matrix,
    ) -> None:
        """``C = alpha * A * B + beta * C`` recomputing entries of ``A``."""

    @abstractmethod
    def _implicit_diagonal(self, handle: ImplicitKernelMatrix) -> np.ndarray:
        """Return the diagonal of a matrix-free kernel matrix."""

    @abstractmethod
    def _cholesky_factor(self, packed, num_rows: int, padding: int):
        """Return the packed upper Cholesky factor of a packed matrix."""

    @abstractmethod
    def _apply_jacobi(self, handle: PreconditionerHandle, R: Matrix,
                      S: Matrix) -> None:
        """``S = R / diag(A)`` row by row."""

    @abstractmethod
    def _apply_cholesky(self, handle: PreconditionerHandle, R: Matrix,
                        S: Matrix) -> None:
        """Solve ``U^T U S^T = R^T`` for every row of ``R``."""

    @abstractmethod
    def predict_values(
        self,
        params: Parameter,
        support_vectors: np.ndarray,
        alpha: np.ndarray,
        rho: np.ndarray,
        points: np.ndarray,
    ) -> np.ndarray:
        """Return ``-rho + sum_i alpha_i k(sv_i, x)`` per RHS and point.

        Returns
        -------
        ndarray
            Shape ``(num_rhs, num_points)``.
        """

    # ------------------------------------------------------------------ #
    #                            shared logic                            #
    # ------------------------------------------------------------------ #
    @property
    def preferred_layout(self) -> LayoutType:
        """Layout the backend stores data points in."""
        return self.layout

    def as_matrix(self, data, padding=(PADDING_SIZE, PADDING_SIZE)) -> Matrix:
        """Return ``data`` as a padded :class:`Matrix` in ``self.layout``."""
        if isinstance(data, Matrix):
            if (
                data.padding == tuple(padding)
                and data.layout is self.layout
                and data.dtype == np.dtype(self.precision)
            ):
                return data
            return data.copy(
                padding=padding, layout=self.layout, dtype=self.precision
            )
        return Matrix.from_array(
            data, padding=padding, layout=self.layout, dtype=self.precision
        )

    def estimate_explicit_memory(
        self, num_rows: int, num_features: int
    ) -> int:
        """Bytes needed to keep data and packed kernel matrix resident."""
        itemsize = np.dtype(self.precision).itemsize
        elements = (
            packed_size(num_rows, PADDING_SIZE)
            + (num_rows + 1 + PADDING_SIZE) * (num_features + PADDING_SIZE)
            + num_rows + PADDING_SIZE
        )
        return int(elements * itemsize)

    def resolve_solver(
        self, solver, num_rows: int, num_features: int
    ) -> SolverType:
        """Resolve ``automatic`` to a concrete strategy.

        The explicit strategy is chosen when its footprint fits into
        ``mem_proportion`` of the available memory.
        """
        solver = _to_solver_type(solver)
        if solver is not SolverType.automatic:
            return solver
        needed = self.estimate_explicit_memory(num_rows, num_features)
        budget = int(self.available_memory() * self.mem_proportion)
        if needed <= budget:
            resolved = SolverType.cg_explicit
        else:
            resolved = SolverType.cg_implicit
        self.logger.progress(
            "resolve_solver",
            f"Using {resolved.name} as solver for automatic, the explicit "
            f"kernel matrix needs {needed} of {budget} usable bytes.",
        )
        return resolved

    def _check_handle(self, handle: MatrixHandle) -> None:
        check_precondition(
            isinstance(handle, MatrixHandle),
            f"Expected a matrix handle, got {type(handle).__name__}!",
        )
        check_precondition(
            handle.backend == self.name,
            f"Handle created by the '{handle.backend}' backend can't be "
            f"used by the '{self.name}' backend!",
        )
        handle.check_alive()

    def assemble_kernel_matrix(
        self,
        data,
        params: Parameter,
        q: np.ndarray,
        QA_cost: float,
        solver=SolverType.automatic,
    ) -> KernelMatrixHandle:
        """Create the handle of the reduced kernel matrix ``A``.

        Parameters
        ----------
        data
            All data points, one per row; the last row is the anchor
            eliminated by the dimensional reduction.
        params
            Kernel parameters with gamma resolved.
        q, QA_cost
            Result of the dimensional reduction.
        solver
            ``automatic``, ``cg_explicit`` or ``cg_implicit``.

        Returns
        -------
        KernelMatrixHandle
            :class:`ExplicitKernelMatrix` or :class:`ImplicitKernelMatrix`.
        """
        params.sanity_check()
        data = self.as_matrix(data)
        check_precondition(
            not data.empty, "The data matrix must not be empty!"
        )
        num_rows = data.num_rows - 1
        num_features = data.num_cols
        q = np.asarray(q, dtype=self.precision)
        check_precondition(
            q.shape == (num_rows,),
            f"Sizes mismatch!: q has {q.shape[0] if q.ndim else 0} "
            f"entries, expected {num_rows}!",
        )
        solver = self.resolve_solver(solver, num_rows, num_features)
        cost = 1.0 / params.cost

        q_padded = np.zeros(num_rows + PADDING_SIZE, dtype=self.precision)
        q_padded[:num_rows] = q
        data_backend = self._prepare_data(data)
        q_backend = self._to_backend(q_padded)

        if solver is SolverType.cg_explicit:
            self.logger.start_event("kernel_matrix_assembly")
            packed = self._assemble_explicit(
                data_backend, num_rows, num_features, q_backend,
                self.precision(QA_cost), self.precision(cost), params,
                PADDING_SIZE,
            )
            duration = self.logger.stop_event("kernel_matrix_assembly")
            self.logger.add_entry(
                "kernel_matrix", "kernel_matrix_assembly", duration
            )
            return ExplicitKernelMatrix(
                backend=self.name,
                num_rows=num_rows,
                packed=packed,
                padding=PADDING_SIZE,
            )
        return ImplicitKernelMatrix(
            backend=self.name,
            num_rows=num_rows,
            data=data_backend,
            num_features=num_features,
            q=q_backend,
            QA_cost=float(QA_cost),
            cost=cost,
            params=params,
        )

    def kernel_matrix_from_dense(
        self, dense, padding: int = PADDING_SIZE
    ) -> ExplicitKernelMatrix:
        """Wrap a known symmetric matrix as an explicit handle.

        Only the upper triangle of ``dense`` is read.
        """
        dense = np.asarray(dense, dtype=self.precision)
        check_precondition(
            dense.size > 0, "The kernel matrix must not be empty!"
        )
        packed = pack_upper(dense, padding=padding)
        return ExplicitKernelMatrix(
            backend=self.name,
            num_rows=dense.shape[0],
            packed=self._to_backend(packed),
            padding=padding,
        )

    def _packed_diagonal_indices(self, num_rows: int, padding: int):
        return np.array(
            [packed_index(i, i, num_rows, padding) for i in range(num_rows)],
            dtype=np.int64,
        )

    def kernel_matrix_diagonal(self, A: KernelMatrixHandle) -> np.ndarray:
        """Return the diagonal of ``A`` as a host array."""
        self._check_handle(A)
        if isinstance(A, ExplicitKernelMatrix):
            packed = self._to_host(A.packed)
            return packed[self._packed_diagonal_indices(A.num_rows,
                                                        A.padding)]
        return self._implicit_diagonal(A)

    def materialize(self, A: KernelMatrixHandle):
        """Return the packed storage of ``A``, assembling it if implicit."""
        self._check_handle(A)
        if isinstance(A, ExplicitKernelMatrix):
            return A.packed, A.padding
        params = A.params
        packed = self._assemble_explicit(
            A.data, A.num_rows, A.num_features, A.q,
            self.precision(A.QA_cost), self.precision(A.cost), params,
            PADDING_SIZE,
        )
        return packed, PADDING_SIZE

    def build_preconditioner(
        self, A: KernelMatrixHandle, kind=PreconditionerType.none
    ) -> PreconditionerHandle:
        """Create the preconditioner handle ``M`` for ``A``.

        Notes
        -----
        ``cholesky`` requires ``A`` to be strictly positive definite. The
        factorization does not check this; an indefinite matrix produces
        NaN or infinite entries in the factor.
        """
        self._check_handle(A)
        kind = _to_preconditioner_type(kind)
        handle = PreconditionerHandle(
            backend=self.name, num_rows=A.num_rows, kind=kind
        )
        if kind is PreconditionerType.jacobi:
            diagonal = np.zeros(A.num_rows + PADDING_SIZE,
                                dtype=self.precision)
            diagonal[:A.num_rows] = self.kernel_matrix_diagonal(A)
            diagonal[A.num_rows:] = 1.0
            handle.diagonal = self._to_backend(diagonal)
        elif kind is PreconditionerType.cholesky:
            self.logger.start_event("cholesky_factorization")
            packed, padding = self.materialize(A)
            handle.factor = self._cholesky_factor(
                packed, A.num_rows, padding
            )
            handle.padding = padding
            duration = self.logger.stop_event("cholesky_factorization")
            self.logger.add_entry(
                "preconditioner", "cholesky_factorization", duration
            )
        return handle

    def apply_preconditioner(
        self, M: PreconditionerHandle, R: Matrix
    ) -> Matrix:
        """Return ``S = M^-1 R`` for every row of ``R``."""
        self._check_handle(M)
        check_precondition(
            R.num_cols == M.num_rows,
            f"R has {R.num_cols} columns, but M has order {M.num_rows}!",
        )
        S = Matrix(
            R.num_rows, R.num_cols, padding=R.padding, layout=R.layout,
            dtype=R.dtype,
        )
        if M.kind is PreconditionerType.jacobi:
            self._apply_jacobi(M, R, S)
        elif M.kind is PreconditionerType.cholesky:
            self._apply_cholesky(M, R, S)
        else:
            S.assign(R)
        return S

    def blas_level_3(
        self,
        alpha: float,
        handle: MatrixHandle,
        B: Matrix,
        beta: float,
        C: Matrix,
        solver: Optional[SolverType] = None,
    ) -> None:
        """Compute ``C = alpha * handle * B + beta * C`` row by row.

        Every row of ``B`` and ``C`` is one right-hand side. ``handle`` is
        either a kernel matrix or a preconditioner; the result is complete
        when the call returns.

        Raises
        ------
        PreconditionError
            On empty or mismatched matrices, or when ``solver`` names a
            concrete strategy different from the handle's.
        """
        self._check_handle(handle)
        check_precondition(not B.empty, "The B matrix must not be empty!")
        check_precondition(not C.empty, "The C matrix must not be empty!")
        check_precondition(
            B.shape == C.shape,
            f"Shapes of B {B.shape} and C {C.shape} must match!",
        )
        check_precondition(
            B.num_cols == handle.num_rows,
            f"B has {B.num_cols} columns, but the matrix has order "
            f"{handle.num_rows}!",
        )
        check_same_padding((B, C))
        alpha = self.precision(alpha)
        beta = self.precision(beta)

        if isinstance(handle, PreconditionerHandle):
            S = self.apply_preconditioner(handle, B)
            if beta == 0:
                C.values[...] = alpha * S.values
            else:
                C.values[...] = alpha * S.values + beta * C.values
            return

        if solver is not None:
            solver = _to_solver_type(solver)
        if solver is not None and solver is not SolverType.automatic:
            check_precondition(
                solver is handle.solver,
                f"Requested {solver.name}, but the kernel "
                f"matrix was assembled for {handle.solver.name}!",
            )
        if isinstance(handle, ExplicitKernelMatrix):
            self._symm_explicit(alpha, handle, B, beta, C)
        else:
            self._symm_implicit(alpha, handle, B, beta, C)
