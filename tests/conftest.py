import os

# The CUDA backend runs on the simulator unless a device is requested
# explicitly; this has to happen before numba.cuda is imported.
os.environ.setdefault("NUMBA_ENABLE_CUDASIM", "1")

from types import SimpleNamespace

import numpy as np
import pytest

from cusvm.backends import CPUBackend, CUDABackend
from cusvm.cuda_simsafe import is_cudasim_enabled
from cusvm.exceptions import UnsupportedBackendError
from cusvm.parameter import KernelFunctionType, Parameter
from cusvm.time_logger import TimeLogger

np.set_printoptions(linewidth=120, precision=12)


# --------------------------------------------------------------------------- #
#                           Marker handling                                   #
# --------------------------------------------------------------------------- #
def pytest_collection_modifyitems(config, items):
    if not is_cudasim_enabled():
        return
    skip = pytest.mark.skip(reason="needs a real CUDA device")
    for item in items:
        if "nocudasim" in item.keywords:
            item.add_marker(skip)


# ========================================
# PRECISION AND TOLERANCE
# ========================================


@pytest.fixture(scope="session")
def precision_override(request):
    if hasattr(request, "param"):
        return request.param
    return None


@pytest.fixture(scope="session")
def precision(precision_override):
    """Return the precision under test, defaulting to float64.

    Usage:
    @pytest.mark.parametrize("precision_override", [np.float32],
        indirect=True)
    def test_something(precision):
        # precision will be np.float32 here
    """
    if precision_override is not None:
        return precision_override
    return np.float64


@pytest.fixture(scope="session")
def tolerance(precision):
    if precision == np.float32:
        return SimpleNamespace(
            abs_loose=1e-4,
            abs_tight=1e-6,
            rel_loose=1e-4,
            rel_tight=1e-5,
        )

    if precision == np.float64:
        return SimpleNamespace(
            abs_loose=1e-8,
            abs_tight=1e-12,
            rel_loose=1e-8,
            rel_tight=1e-12,
        )

    raise ValueError("Unsupported precision for tolerance fixture")


# ========================================
# BACKENDS
# ========================================


@pytest.fixture(scope="function")
def logger():
    return TimeLogger(None)


@pytest.fixture(scope="session")
def cpu_backend(precision):
    return CPUBackend(precision=precision, logger=TimeLogger(None))


@pytest.fixture(scope="session")
def cuda_backend(precision):
    try:
        return CUDABackend(precision=precision, logger=TimeLogger(None))
    except UnsupportedBackendError as e:
        pytest.skip(str(e))


@pytest.fixture(scope="session", params=["cpu", "cuda"])
def backend(request):
    """Every backend, each run on the same inputs."""
    return request.getfixturevalue(f"{request.param}_backend")


# ========================================
# INPUT DATA
# ========================================


@pytest.fixture(scope="session")
def spd_matrix():
    """Small SPD matrix with a known integer Cholesky factor."""
    return np.array(
        [[4.0, 12.0, -16.0],
         [12.0, 37.0, -43.0],
         [-16.0, -43.0, 98.0]]
    )


@pytest.fixture(scope="session")
def cholesky_factor():
    return np.array(
        [[2.0, 6.0, -8.0],
         [0.0, 1.0, 5.0],
         [0.0, 0.0, 3.0]]
    )


@pytest.fixture(scope="session")
def data_points():
    """Ten positive points with four features."""
    rng = np.random.default_rng(1234)
    return rng.uniform(0.1, 1.0, size=(10, 4))


@pytest.fixture(scope="session")
def separable_problem():
    """Two well separated clusters labelled +1 and -1."""
    rng = np.random.default_rng(42)
    positive = rng.normal(loc=2.0, scale=0.3, size=(8, 3))
    negative = rng.normal(loc=-2.0, scale=0.3, size=(8, 3))
    data = np.vstack([positive, negative])
    labels = np.hstack([np.ones(8), -np.ones(8)])
    order = rng.permutation(data.shape[0])
    return SimpleNamespace(data=data[order], labels=labels[order])


ALL_KERNELS = [
    Parameter(kernel_type=KernelFunctionType.linear),
    Parameter(kernel_type=KernelFunctionType.polynomial, degree=2,
              gamma=0.5, coef0=1.0),
    Parameter(kernel_type=KernelFunctionType.rbf, gamma=0.5),
    Parameter(kernel_type=KernelFunctionType.sigmoid, gamma=0.1,
              coef0=0.5),
    Parameter(kernel_type=KernelFunctionType.laplacian, gamma=0.5),
    Parameter(kernel_type=KernelFunctionType.chi_squared, gamma=0.5),
]


@pytest.fixture(scope="session", params=ALL_KERNELS,
                ids=lambda p: p.kernel_type.name)
def kernel_params(request):
    return request.param
