"""
cusvm: LS-SVM training with a multi right-hand-side CG solver
"""

from importlib.metadata import PackageNotFoundError, version

# Suppress Numba performance warnings for library users. Small problems
# launch grids that numba considers under-occupied, which is not
# actionable for cusvm users.
import warnings
from numba.core.errors import NumbaPerformanceWarning
warnings.filterwarnings("ignore", category=NumbaPerformanceWarning)

from cusvm.backends import *            # noqa
from cusvm.csvm import CSVM, Model      # noqa
from cusvm.exceptions import *          # noqa
from cusvm.matrix import (              # noqa
    LayoutType,
    Matrix,
    pack_upper,
    packed_index,
    packed_size,
    unpack_packed,
)
from cusvm.parameter import (           # noqa
    KernelFunctionType,
    Parameter,
    PreconditionerType,
    SolverSettings,
    SolverType,
)
from cusvm.solver import *              # noqa
from cusvm.time_logger import TimeLogger  # noqa

__all__ = [
    "CSVM",
    "Model",
    "Parameter",
    "SolverSettings",
    "KernelFunctionType",
    "SolverType",
    "PreconditionerType",
    "Matrix",
    "LayoutType",
    "make_backend",
    "conjugate_gradients",
    "perform_dimensional_reduction",
    "TimeLogger",
]

try:
    __version__ = version("cusvm")
except PackageNotFoundError:
    # Package is not installed
    __version__ = "unknown"
