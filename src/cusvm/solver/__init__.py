"""Dimensional reduction and the CG engine."""

from cusvm.solver.conjugate_gradients import conjugate_gradients
from cusvm.solver.dimensional_reduction import (
    DimensionalReduction,
    perform_dimensional_reduction,
)

__all__ = [
    "DimensionalReduction",
    "conjugate_gradients",
    "perform_dimensional_reduction",
]
