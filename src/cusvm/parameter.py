"""Kernel parameters, solver settings, and the enumerations selecting them."""

from enum import IntEnum
from typing import Optional
from warnings import warn

import attrs
import numpy as np
from attrs import field, validators

from cusvm._utils import (
    PrecisionDType,
    enum_converter,
    getype_validator,
    gttype_validator,
    precision_converter,
    precision_validator,
)
from cusvm.exceptions import InvalidParameterError


class KernelFunctionType(IntEnum):
    """Pointwise similarity function used to build the kernel matrix."""
    linear = 0
    polynomial = 1
    rbf = 2
    sigmoid = 3
    laplacian = 4
    chi_squared = 5


class SolverType(IntEnum):
    """Kernel matrix strategy used by the CG solver.

    ``automatic`` is resolved to one of the concrete strategies by the
    backend, based on the packed matrix footprint and available memory.
    """
    automatic = 0
    cg_explicit = 1
    cg_implicit = 2


class PreconditionerType(IntEnum):
    """Approximate inverse applied inside the CG iteration."""
    none = 0
    jacobi = 1
    cholesky = 2


# Kernel parameters read by each kernel function, used to warn about
# parameters that were provided but are ignored.
KERNEL_PARAMETERS = {
    KernelFunctionType.linear: set(),
    KernelFunctionType.polynomial: {"degree", "gamma", "coef0"},
    KernelFunctionType.rbf: {"gamma"},
    KernelFunctionType.sigmoid: {"gamma", "coef0"},
    KernelFunctionType.laplacian: {"gamma"},
    KernelFunctionType.chi_squared: {"gamma"},
}

_DEFAULTS = {"degree": 3, "gamma": None, "coef0": 0.0}


def _gamma_validator(instance, attribute, value):
    if value is None:
        return
    if instance.kernel_type != KernelFunctionType.linear and value <= 0.0:
        raise InvalidParameterError(
            f"gamma must be greater than 0.0, but is {value}!"
        )


def _cost_validator(instance, attribute, value):
    if not value > 0.0:
        raise InvalidParameterError(
            f"cost must be greater than 0.0 since 1 / cost is used, but is "
            f"{value}!"
        )


def _optional_float(value):
    return None if value is None else float(value)


@attrs.define(frozen=True)
class Parameter:
    """Hyper-parameters of a C-SVM training run.

    Attributes
    ----------
    kernel_type : KernelFunctionType
        Kernel function, accepts enum members, integers, or names.
    degree : int
        Exponent of the polynomial kernel.
    gamma : float or None
        Kernel scale. ``None`` means unset and resolves to
        ``1 / num_features`` once the data is known.
    coef0 : float
        Offset of the polynomial and sigmoid kernels.
    cost : float
        Regularization parameter C, must not be zero.
    """

    kernel_type: KernelFunctionType = field(
        default=KernelFunctionType.linear,
        converter=enum_converter(KernelFunctionType),
    )
    degree: int = field(
        default=3, converter=int, validator=getype_validator(int, 0)
    )
    gamma: Optional[float] = field(
        default=None, converter=_optional_float, validator=_gamma_validator
    )
    coef0: float = field(default=0.0, converter=float)
    cost: float = field(
        default=1.0, converter=float, validator=_cost_validator
    )

    def __attrs_post_init__(self):
        used = KERNEL_PARAMETERS[self.kernel_type]
        for name, default in _DEFAULTS.items():
            if name not in used and getattr(self, name) != default:
                warn(
                    f"{name} parameter provided to the "
                    f"{self.kernel_type.name} kernel, which is not used!",
                    UserWarning,
                )

    @property
    def gamma_is_set(self) -> bool:
        return self.gamma is not None

    def resolve_gamma(self, num_features: int) -> "Parameter":
        """Return a copy with an unset gamma replaced by ``1/num_features``.

        Kernels that do not read gamma are returned unchanged.

        Raises
        ------
        InvalidParameterError
            If ``num_features`` is not positive.
        """
        if (
            self.gamma is not None
            or "gamma" not in KERNEL_PARAMETERS[self.kernel_type]
        ):
            return self
        if num_features <= 0:
            raise InvalidParameterError(
                f"The number of features must be greater than 0 to derive "
                f"gamma, but is {num_features}!"
            )
        return attrs.evolve(self, gamma=1.0 / num_features)

    def sanity_check(self) -> None:
        """Re-run the checks that only matter once data is bound.

        Raises
        ------
        InvalidParameterError
            If gamma is still unset for a kernel that reads it.
        """
        if (
            "gamma" in KERNEL_PARAMETERS[self.kernel_type]
            and self.gamma is None
        ):
            raise InvalidParameterError(
                f"gamma must be set for the {self.kernel_type.name} kernel!"
            )


def _max_iter_validator(instance, attribute, value):
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise TypeError(
            f"max_iter must be an integer, got {type(value).__name__}."
        )
    if value <= 0:
        raise InvalidParameterError(
            f"max_iter must be greater than 0, but is {value}!"
        )


@attrs.define
class SolverSettings:
    """Settings of the iterative solve, independent of the kernel.

    Attributes
    ----------
    epsilon : float
        Relative residual target, a RHS converges once
        ``delta <= epsilon**2 * delta0``.
    max_iter : int or None
        CG iteration cap. ``None`` uses the number of reduced data points.
    solver : SolverType
        Kernel matrix strategy.
    preconditioner : PreconditionerType
        Preconditioner applied during CG.
    precision : PrecisionDType
        Floating point type of all matrices.
    mem_proportion : float
        Fraction of the available memory the explicit strategy may claim
        when ``solver`` is automatic.
    """

    epsilon: float = field(
        default=1e-3, converter=float, validator=gttype_validator(float, 0.0)
    )
    max_iter: Optional[int] = field(
        default=None, validator=_max_iter_validator
    )
    solver: SolverType = field(
        default=SolverType.automatic, converter=enum_converter(SolverType)
    )
    preconditioner: PreconditionerType = field(
        default=PreconditionerType.none,
        converter=enum_converter(PreconditionerType),
    )
    precision: PrecisionDType = field(
        default=np.float64,
        converter=precision_converter,
        validator=precision_validator,
    )
    mem_proportion: float = field(
        default=0.9,
        converter=float,
        validator=validators.and_(
            gttype_validator(float, 0.0), validators.le(1.0)
        ),
    )

    def resolve_max_iter(self, num_rows: int) -> int:
        """Return the iteration cap for a system with ``num_rows`` rows."""
        if self.max_iter is None:
            return max(int(num_rows), 1)
        return int(self.max_iter)
