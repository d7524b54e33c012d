"""User-facing C-SVM interface.

:class:`CSVM` wires the solver stack together. ``fit`` reduces the
problem, assembles the kernel matrix on the selected backend, runs the
multi right-hand-side CG solver and turns the solution into a
:class:`Model`. One right-hand side is built per row of ``targets``;
every row is an independent binary problem sharing the same data.
"""

from typing import Any, Dict, Optional, Set

import attrs
import numpy as np
from attrs import field

from cusvm._utils import get_readonly_view
from cusvm.backends import Backend, make_backend
from cusvm.exceptions import check_precondition
from cusvm.parameter import Parameter, SolverSettings
from cusvm.solver.conjugate_gradients import conjugate_gradients
from cusvm.solver.dimensional_reduction import (
    DimensionalReduction,
    perform_dimensional_reduction,
)
from cusvm.time_logger import TimeLogger

ALL_PARAMETER_SETTINGS = {fld.name for fld in attrs.fields(Parameter)}
ALL_SOLVER_SETTINGS = {fld.name for fld in attrs.fields(SolverSettings)}
_BACKEND_SETTINGS = {"precision", "mem_proportion"}


@attrs.define(frozen=True)
class Model:
    """Result of :meth:`CSVM.fit`.

    Attributes
    ----------
    params : Parameter
        Kernel parameters with gamma resolved.
    support_vectors : ndarray
        All training points, shape ``(num_support_vectors, num_features)``.
    alpha : ndarray
        Weights, shape ``(num_rhs, num_support_vectors)``. The weight of
        the anchor point is minus the sum of the others.
    rho : ndarray
        Bias per right-hand side.
    iterations : int
        CG iterations performed.
    """

    params: Parameter
    support_vectors: np.ndarray = field(eq=False, repr=False)
    alpha: np.ndarray = field(eq=False, repr=False)
    rho: np.ndarray = field(eq=False)
    iterations: int = 0

    @property
    def num_support_vectors(self) -> int:
        return self.support_vectors.shape[0]

    @property
    def num_features(self) -> int:
        return self.support_vectors.shape[1]

    @property
    def num_rhs(self) -> int:
        return self.alpha.shape[0]

    @property
    def w(self) -> np.ndarray:
        """Normal vector of the separating hyperplane, per right-hand side.

        Only meaningful for the linear kernel.
        """
        return self.alpha @ self.support_vectors


def _as_2d_targets(targets) -> np.ndarray:
    targets = np.asarray(targets, dtype=np.float64)
    if targets.ndim == 1:
        targets = targets.reshape(1, -1)
    check_precondition(
        targets.ndim == 2,
        f"Targets must be one- or two-dimensional, got {targets.ndim} "
        "dimensions!",
    )
    return targets


class CSVM:
    """Least-squares C-SVM trained with the CG solver.

    Parameters
    ----------
    params
        Kernel parameters. Defaults to a linear kernel.
    settings
        Solver settings. Defaults to :class:`SolverSettings`.
    backend
        ``"automatic"``, ``"cpu"``, ``"cuda"``, or a :class:`Backend`
        instance. An instance whose precision or memory proportion differs
        from ``settings`` is replaced by a new backend of the same type.
    logger
        Receives timings and tracking entries. Defaults to a silent
        :class:`TimeLogger`.
    **kwargs
        Overrides for fields of ``params`` or ``settings``.

    Examples
    --------
    >>> svm = CSVM(kernel_type="rbf", epsilon=1e-6, backend="cpu")
    >>> model = svm.fit(data, labels)
    >>> svm.score(model, data, labels)
    """

    def __init__(
        self,
        params: Optional[Parameter] = None,
        settings: Optional[SolverSettings] = None,
        backend: Any = "automatic",
        logger: Optional[TimeLogger] = None,
        **kwargs,
    ) -> None:
        self.logger = logger if logger is not None else TimeLogger(None)
        self.params = params if params is not None else Parameter()
        self.settings = settings if settings is not None else SolverSettings()
        self._backend_target = backend
        self.backend = None
        self._reduction: Optional[DimensionalReduction] = None
        self.update(kwargs)
        if self.backend is None:
            self._make_backend()

    def _make_backend(self) -> None:
        target = self._backend_target
        if isinstance(target, Backend):
            if (target.precision == self.settings.precision
                    and target.mem_proportion == self.settings.mem_proportion):
                self.backend = target
            else:
                # same backend type, rebuilt with the current settings
                self.backend = type(target)(
                    precision=self.settings.precision,
                    mem_proportion=self.settings.mem_proportion,
                    logger=target.logger,
                )
        else:
            self.backend = make_backend(
                self._backend_target,
                precision=self.settings.precision,
                mem_proportion=self.settings.mem_proportion,
                logger=self.logger,
            )

    def update(
        self,
        updates_dict: Optional[Dict[str, Any]] = None,
        silent: bool = False,
        **kwargs,
    ) -> Set[str]:
        """Update kernel parameters and solver settings.

        Parameters
        ----------
        updates_dict
            Mapping of field names of :class:`Parameter` or
            :class:`SolverSettings` to new values.
        silent
            Ignore unknown names instead of raising.
        **kwargs
            Additional updates.

        Returns
        -------
        set[str]
            The recognized names.

        Raises
        ------
        KeyError
            For unknown names unless ``silent``.
        """
        updates = {} if updates_dict is None else dict(updates_dict)
        updates.update(kwargs)
        if not updates:
            return set()

        param_updates = {k: v for k, v in updates.items()
                         if k in ALL_PARAMETER_SETTINGS}
        settings_updates = {k: v for k, v in updates.items()
                            if k in ALL_SOLVER_SETTINGS}
        recognized = set(param_updates) | set(settings_updates)
        unrecognized = set(updates) - recognized
        if unrecognized and not silent:
            raise KeyError(
                f"'{', '.join(sorted(unrecognized))}' is not a valid "
                "parameter or solver setting."
            )
        if param_updates:
            self.params = attrs.evolve(self.params, **param_updates)
        if settings_updates:
            self.settings = attrs.evolve(self.settings, **settings_updates)
            if _BACKEND_SETTINGS & set(settings_updates):
                self._make_backend()
        return recognized

    @property
    def precision(self):
        return self.settings.precision

    def perform_dimensional_reduction(self, params: Parameter, data):
        """Return ``(q, QA_cost)`` for ``data``, reusing compiled code."""
        if self._reduction is None:
            self._reduction = DimensionalReduction(self.precision, params)
        return perform_dimensional_reduction(
            params, data, logger=self.logger, reduction=self._reduction
        )

    def fit(self, data, targets, **kwargs) -> Model:
        """Train on ``data`` with ``+1``/``-1`` labels ``targets``.

        Parameters
        ----------
        data
            Training points, shape ``(num_points, num_features)``.
        targets
            Labels, shape ``(num_points,)`` or ``(num_rhs, num_points)``.
        **kwargs
            Solver setting overrides for this call only, e.g. ``epsilon``.

        Returns
        -------
        Model
            Weights and biases of every right-hand side.
        """
        settings = attrs.evolve(self.settings, **kwargs) if kwargs \
            else self.settings
        data = np.ascontiguousarray(data, dtype=self.precision)
        check_precondition(
            data.ndim == 2 and data.shape[1] > 0,
            "The data must be a non-empty two-dimensional matrix!",
        )
        check_precondition(
            data.shape[0] >= 2,
            f"At least two data points are required, got {data.shape[0]}!",
        )
        targets = _as_2d_targets(targets)
        check_precondition(
            targets.shape[1] == data.shape[0],
            f"Number of targets ({targets.shape[1]}) and data points "
            f"({data.shape[0]}) mismatch!",
        )
        num_rows = data.shape[0] - 1
        params = self.params.resolve_gamma(data.shape[1])
        params.sanity_check()

        self.logger.start_event("fit")
        q, QA_cost = self.perform_dimensional_reduction(params, data)
        b_last = targets[:, -1]
        B = targets[:, :-1] - b_last[:, np.newaxis]

        with self.backend.assemble_kernel_matrix(
            data, params, q, QA_cost, settings.solver
        ) as A:
            with self.backend.build_preconditioner(
                A, settings.preconditioner
            ) as M:
                X, iterations = conjugate_gradients(
                    self.backend, A, B, M,
                    eps=settings.epsilon,
                    max_cg_iter=settings.resolve_max_iter(num_rows),
                    solver_type=A.solver,
                    logger=self.logger,
                )

        alpha_reduced = X.to_numpy().astype(np.float64)
        sum_alpha = alpha_reduced.sum(axis=1)
        rho = -(b_last + QA_cost * sum_alpha - alpha_reduced @ q)
        alpha = np.hstack([alpha_reduced, -sum_alpha[:, np.newaxis]])
        duration = self.logger.stop_event("fit")
        self.logger.add_entry("csvm", "fit_time", duration)
        return Model(
            params=params,
            support_vectors=get_readonly_view(data.copy()),
            alpha=get_readonly_view(alpha),
            rho=rho,
            iterations=iterations,
        )

    def predict_values(self, model: Model, points) -> np.ndarray:
        """Return the decision values of ``points``.

        Returns
        -------
        ndarray
            Shape ``(num_points,)`` for a single right-hand side, else
            ``(num_rhs, num_points)``.
        """
        points = np.atleast_2d(np.asarray(points, dtype=self.precision))
        check_precondition(
            points.shape[1] == model.num_features,
            f"Number of features per data point ({points.shape[1]}) must "
            f"match the number of features per support vector of the "
            f"model ({model.num_features})!",
        )
        values = self.backend.predict_values(
            model.params, model.support_vectors, model.alpha, model.rho,
            points,
        )
        if model.num_rhs == 1:
            return values[0]
        return values

    def predict(self, model: Model, points) -> np.ndarray:
        """Return ``+1`` for positive decision values, else ``-1``."""
        values = self.predict_values(model, points)
        return np.where(values > 0, 1, -1)

    def score(self, model: Model, points, targets) -> float:
        """Return the fraction of correctly predicted labels."""
        predicted = self.predict(model, points)
        targets = np.asarray(targets)
        check_precondition(
            predicted.shape == targets.shape,
            f"Targets of shape {targets.shape} don't match predictions of "
            f"shape {predicted.shape}!",
        )
        return float(np.mean(predicted == targets))
