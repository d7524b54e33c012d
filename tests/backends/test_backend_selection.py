import numpy as np
import pytest

from cusvm.backends import (
    CPUBackend,
    CUDABackend,
    ExplicitKernelMatrix,
    make_backend,
)
from cusvm.backends.cuda.cuda_backend import cuda_errors
from cusvm.backends.handles import KernelMatrixHandle
from cusvm.cuda_simsafe import CudaAPIError, is_cudasim_enabled
from cusvm.exceptions import (
    BackendError,
    InvalidParameterError,
    UnsupportedBackendError,
)
from cusvm.parameter import SolverType
from cusvm.time_logger import TimeLogger


class TestMakeBackend:

    def test_cpu(self):
        backend = make_backend("cpu", precision="float32")
        assert isinstance(backend, CPUBackend)
        assert backend.precision == np.float32

    def test_cuda(self, cuda_backend):
        assert isinstance(make_backend("CUDA"), CUDABackend)

    @pytest.mark.skipif(not is_cudasim_enabled(),
                        reason="automatic picks the device when present")
    def test_automatic_without_device(self):
        assert isinstance(make_backend(), CPUBackend)

    def test_unknown_target(self):
        with pytest.raises(UnsupportedBackendError, match="opencl"):
            make_backend("opencl")

    def test_logger_is_passed_on(self):
        logger = TimeLogger(None)
        assert make_backend("cpu", logger=logger).logger is logger

    @pytest.mark.parametrize("mem_proportion", [0.0, -0.5, 1.5])
    def test_invalid_mem_proportion(self, mem_proportion):
        with pytest.raises(InvalidParameterError):
            make_backend("cpu", mem_proportion=mem_proportion)


class TestResolveSolver:

    @pytest.fixture(scope="function")
    def backend(self, monkeypatch):
        backend = CPUBackend(mem_proportion=0.5)
        monkeypatch.setattr(backend, "available_memory", lambda: 10 ** 6)
        return backend

    def test_small_problem_is_explicit(self, backend):
        assert backend.estimate_explicit_memory(10, 4) < 0.5 * 10 ** 6
        assert (backend.resolve_solver("automatic", 10, 4)
                is SolverType.cg_explicit)

    def test_large_problem_is_implicit(self, backend):
        assert backend.estimate_explicit_memory(1000, 4) > 0.5 * 10 ** 6
        assert (backend.resolve_solver(SolverType.automatic, 1000, 4)
                is SolverType.cg_implicit)

    @pytest.mark.parametrize("solver", ["cg_explicit", "cg_implicit"])
    def test_concrete_solver_is_kept(self, backend, solver):
        assert backend.resolve_solver(solver, 1000, 4) is SolverType[solver]

    def test_memory_estimate_grows_with_precision(self):
        single = CPUBackend(precision=np.float32)
        double = CPUBackend(precision=np.float64)
        assert (double.estimate_explicit_memory(50, 3)
                == 2 * single.estimate_explicit_memory(50, 3))

    def test_resolution_is_reported(self, backend):
        backend.resolve_solver("automatic", 10, 4)
        messages = [event.metadata["message"]
                    for event in backend.logger.events
                    if event.name == "resolve_solver"]
        assert messages and "cg_explicit" in messages[-1]


class TestCudaErrors:

    def test_driver_error_keeps_code(self):
        with pytest.raises(BackendError) as excinfo:
            with cuda_errors("allocating"):
                raise CudaAPIError(2, "out of memory")
        assert excinfo.value.code == 2
        assert "allocating" in str(excinfo.value)
        assert not isinstance(excinfo.value, UnsupportedBackendError)

    def test_other_errors_pass_through(self):
        with pytest.raises(KeyError):
            with cuda_errors("allocating"):
                raise KeyError("unrelated")


class TestHandles:

    def test_context_manager_releases(self, backend, spd_matrix):
        with ExplicitKernelMatrix.from_dense(backend, spd_matrix) as A:
            assert not A.released
        assert A.released

    def test_release_inside_exception(self, cpu_backend, spd_matrix):
        with pytest.raises(RuntimeError):
            with cpu_backend.kernel_matrix_from_dense(spd_matrix) as A:
                raise RuntimeError("stop")
        assert A.released

    def test_handle_is_not_equal_to_copy(self, cpu_backend, spd_matrix):
        first = cpu_backend.kernel_matrix_from_dense(spd_matrix)
        second = cpu_backend.kernel_matrix_from_dense(spd_matrix)
        assert first != second
        assert first == first

    def test_kernel_matrix_handle_is_abstract(self):
        with pytest.raises(TypeError):
            KernelMatrixHandle(backend="cpu", num_rows=3)

    def test_handles_report_their_solver(self, cpu_backend, spd_matrix):
        with cpu_backend.kernel_matrix_from_dense(spd_matrix) as A:
            assert isinstance(A, KernelMatrixHandle)
            assert A.solver is SolverType.cg_explicit
