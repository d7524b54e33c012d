"""Masked multi right-hand-side preconditioned conjugate gradients.

Every row of ``B`` is an independent system ``A x = b`` sharing the same
kernel matrix. All rows advance together, one backend multiply per
iteration serves all of them, and each row tracks its own convergence.

A row is converged once ``delta <= epsilon**2 * delta0``, where ``delta`` is
the preconditioned squared residual norm ``r^T M^-1 r`` and ``delta0`` its
initial value. Converged rows are frozen: their solution, residual, search
direction and ``delta`` are no longer updated, so a converged row can not
drift back above its target.
"""

from typing import Optional, Tuple

import numpy as np

from cusvm.backends.base import Backend
from cusvm.backends.handles import KernelMatrixHandle, PreconditionerHandle
from cusvm.constants import PADDING_SIZE, RESIDUAL_REFRESH_INTERVAL
from cusvm.exceptions import InvalidParameterError, check_precondition
from cusvm.matrix import LayoutType, Matrix
from cusvm.operators import masked_rowwise_scale, rowwise_dot
from cusvm.parameter import SolverType
from cusvm.time_logger import TimeLogger


def _as_rhs_matrix(B, precision) -> Matrix:
    padding = (PADDING_SIZE, PADDING_SIZE)
    if isinstance(B, Matrix):
        return B.copy(padding=padding, layout=LayoutType.aos,
                      dtype=precision)
    return Matrix.from_array(B, padding=padding, layout=LayoutType.aos,
                             dtype=precision)


def conjugate_gradients(
    backend: Backend,
    A: KernelMatrixHandle,
    B,
    M: Optional[PreconditionerHandle] = None,
    eps: float = 1e-3,
    max_cg_iter: Optional[int] = None,
    solver_type=SolverType.automatic,
    logger: Optional[TimeLogger] = None,
) -> Tuple[Matrix, int]:
    """Solve ``A X^T = B^T`` for every row of ``B``.

    Parameters
    ----------
    backend
        Backend that created ``A`` and ``M``.
    A
        Handle of the reduced kernel matrix.
    B
        Right-hand sides, one per row, one column per reduced data point.
    M
        Optional preconditioner handle. ``None`` runs plain CG.
    eps
        Relative residual target, must be positive.
    max_cg_iter
        Iteration cap, must be positive. ``None`` uses the order of ``A``.
    solver_type
        Strategy the multiply is expected to use. Forwarded to
        :meth:`Backend.blas_level_3`; ``automatic`` accepts either.
    logger
        Receives per-iteration progress and the final tracking entries.

    Returns
    -------
    tuple[Matrix, int]
        Solution ``X`` with the shape of ``B`` and the number of
        iterations performed. Reaching ``max_cg_iter`` without convergence
        is reported through ``logger`` only.

    Raises
    ------
    InvalidParameterError
        If ``eps`` or ``max_cg_iter`` are not positive.
    PreconditionError
        If ``B`` is empty or does not match the order of ``A``.
    """
    if logger is None:
        logger = backend.logger
    if not eps > 0.0:
        raise InvalidParameterError(
            f"The stopping criterion in the CG algorithm must be greater "
            f"than 0.0, but is {eps}!"
        )
    if max_cg_iter is None:
        max_cg_iter = A.num_rows
    if isinstance(max_cg_iter, bool) or int(max_cg_iter) != max_cg_iter \
            or max_cg_iter <= 0:
        raise InvalidParameterError(
            f"The number of CG iterations must be greater than 0, but is "
            f"{max_cg_iter}!"
        )
    max_cg_iter = int(max_cg_iter)

    B = _as_rhs_matrix(B, backend.precision)
    check_precondition(not B.empty, "The right-hand sides must not be empty!")
    check_precondition(
        B.num_cols == A.num_rows,
        f"The right-hand sides have {B.num_cols} columns, but the kernel "
        f"matrix has order {A.num_rows}!",
    )
    num_rhs = B.num_rows
    eps2 = eps * eps
    blas_timings = []

    def blas_level_3(alpha, handle, lhs, beta, out):
        logger.start_event("blas_level_3")
        backend.blas_level_3(alpha, handle, lhs, beta, out,
                             solver=solver_type)
        blas_timings.append(logger.stop_event("blas_level_3"))

    def apply_preconditioner(residuals):
        if M is None:
            return residuals.copy()
        return backend.apply_preconditioner(M, residuals)

    X = Matrix(num_rhs, B.num_cols, padding=B.padding, dtype=B.dtype,
               fill=1.0)
    R = B.copy()
    blas_level_3(-1.0, A, X, 1.0, R)
    D = apply_preconditioner(R)
    delta = rowwise_dot(R, D)
    delta0 = delta.copy()
    target = eps2 * delta0

    residual_history = []
    delta_history = []
    iteration_timings = []
    iteration = 0
    while iteration < max_cg_iter:
        converged = delta <= target
        num_converged = int(np.count_nonzero(converged))
        worst = int(np.argmax(delta - target))
        residual_history.append(float(delta[worst]))
        delta_history.append(delta.copy())
        logger.progress(
            "cg_iteration",
            f"Done {iteration} out of {max_cg_iter} CG iterations "
            f"({num_converged}/{num_rhs} converged RHS, worst residual "
            f"{delta[worst]:.6e} on row {worst} with target "
            f"{target[worst]:.6e}).",
            iteration=iteration,
            num_converged=num_converged,
        )
        if num_converged == num_rhs:
            break

        logger.start_event("cg_iteration")
        active = ~converged

        Q = Matrix(num_rhs, B.num_cols, padding=B.padding, dtype=B.dtype)
        blas_level_3(1.0, A, D, 0.0, Q)

        with np.errstate(divide="ignore", invalid="ignore"):
            alpha = delta / rowwise_dot(D, Q)
        update_mask = active & np.any(R.values != 0.0, axis=1)
        X += masked_rowwise_scale(update_mask, alpha, D)

        if iteration % RESIDUAL_REFRESH_INTERVAL == \
                RESIDUAL_REFRESH_INTERVAL - 1:
            R_exact = B.copy()
            blas_level_3(-1.0, A, X, 1.0, R_exact)
            R.values[active] = R_exact.values[active]
        else:
            R -= masked_rowwise_scale(active, alpha, Q)

        S = apply_preconditioner(R)
        delta_new = rowwise_dot(R, S)
        with np.errstate(divide="ignore", invalid="ignore"):
            beta = delta_new / delta
        D.values[active] = (beta[active, np.newaxis] * D.values[active]
                            + S.values[active])
        delta[active] = delta_new[active]

        iteration += 1
        iteration_timings.append(logger.stop_event("cg_iteration"))

    converged = delta <= target
    logger.progress(
        "cg_finished",
        f"Finished after {iteration}/{max_cg_iter} iterations with "
        f"{int(np.count_nonzero(converged))}/{num_rhs} converged RHS.",
    )
    logger.add_entry("cg", "iterations", iteration)
    logger.add_entry("cg", "max_iterations", max_cg_iter)
    logger.add_entry("cg", "num_converged_rhs",
                     int(np.count_nonzero(converged)))
    logger.add_entry("cg", "num_rhs", num_rhs)
    logger.add_entry("cg", "residuals", delta.copy())
    logger.add_entry("cg", "target_residuals", target.copy())
    logger.add_entry("cg", "epsilon", eps)
    logger.add_entry("cg", "residual_history", residual_history)
    logger.add_entry("cg", "delta_history", np.array(delta_history))
    logger.add_entry(
        "cg", "avg_iteration_time",
        float(np.mean(iteration_timings)) if iteration_timings else 0.0,
    )
    logger.add_entry(
        "cg", "avg_blas_level_3_time",
        float(np.mean(blas_timings)) if blas_timings else 0.0,
    )
    return X, iteration
