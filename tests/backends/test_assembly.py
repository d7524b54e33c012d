import numpy as np
import pytest
from numpy.testing import assert_allclose

from cusvm.backends import ExplicitKernelMatrix, ImplicitKernelMatrix
from cusvm.exceptions import PreconditionError
from cusvm.kernels import kernel_function
from cusvm.matrix import Matrix, unpack_packed
from cusvm.parameter import Parameter, SolverType


def reference_reduction(data, params):
    """Dense reduced kernel matrix computed point by point on the host."""
    num_points = data.shape[0]
    num_rows = num_points - 1
    kernel = np.array(
        [[kernel_function(data[i], data[j], params)
          for j in range(num_points)] for i in range(num_points)]
    )
    q = kernel[:num_rows, num_rows]
    QA_cost = kernel[num_rows, num_rows] + 1.0 / params.cost
    reduced = (kernel[:num_rows, :num_rows] + QA_cost
               - q[:, np.newaxis] - q[np.newaxis, :]
               + np.eye(num_rows) / params.cost)
    return reduced, q, QA_cost


@pytest.fixture(scope="module")
def reduced_problem(data_points, kernel_params):
    return reference_reduction(data_points, kernel_params)


@pytest.fixture(scope="function")
def rhs_pair(data_points, precision):
    rng = np.random.default_rng(7)
    num_rows = data_points.shape[0] - 1
    B = Matrix.from_array(rng.normal(size=(3, num_rows)), padding=(16, 16),
                          dtype=precision)
    C = Matrix.from_array(rng.normal(size=(3, num_rows)), padding=(16, 16),
                          dtype=precision)
    return B, C


def test_explicit_assembly_matches_reference(backend, data_points,
                                             kernel_params, reduced_problem,
                                             tolerance):
    reduced, q, QA_cost = reduced_problem
    with backend.assemble_kernel_matrix(
        data_points, kernel_params, q, QA_cost, SolverType.cg_explicit
    ) as A:
        assert isinstance(A, ExplicitKernelMatrix)
        assert A.solver is SolverType.cg_explicit
        dense = unpack_packed(backend._to_host(A.packed), A.num_rows,
                              A.padding)
    assert A.released
    assert_allclose(dense, reduced, rtol=tolerance.rel_loose,
                    atol=tolerance.abs_loose)


def test_explicit_assembly_is_symmetric(backend, data_points, kernel_params,
                                        reduced_problem, tolerance):
    _, q, QA_cost = reduced_problem
    num_rows = q.shape[0]
    # multiplying with the identity reads every column of the matrix
    identity = Matrix.from_array(np.eye(num_rows), padding=(16, 16),
                                 dtype=backend.precision)
    columns = Matrix(num_rows, num_rows, padding=(16, 16),
                     dtype=backend.precision)
    with backend.assemble_kernel_matrix(
        data_points, kernel_params, q, QA_cost, "cg_explicit"
    ) as A:
        backend.blas_level_3(1.0, A, identity, 0.0, columns)
    assert_allclose(columns.values, columns.values.T,
                    rtol=tolerance.rel_tight, atol=tolerance.abs_tight)


def test_explicit_and_implicit_multiply_agree(backend, data_points,
                                              kernel_params, reduced_problem,
                                              rhs_pair, tolerance):
    reduced, q, QA_cost = reduced_problem
    B, C = rhs_pair
    C_explicit = C.copy()
    C_implicit = C.copy()
    with backend.assemble_kernel_matrix(
        data_points, kernel_params, q, QA_cost, "cg_explicit"
    ) as A:
        backend.blas_level_3(0.7, A, B, -0.3, C_explicit,
                             solver=SolverType.cg_explicit)
    with backend.assemble_kernel_matrix(
        data_points, kernel_params, q, QA_cost, "cg_implicit"
    ) as A:
        assert isinstance(A, ImplicitKernelMatrix)
        backend.blas_level_3(0.7, A, B, -0.3, C_implicit,
                             solver=SolverType.cg_implicit)

    expected = 0.7 * B.values @ reduced - 0.3 * C.values
    assert_allclose(C_explicit.values, expected, rtol=tolerance.rel_loose,
                    atol=tolerance.abs_loose)
    assert_allclose(C_implicit.values, C_explicit.values,
                    rtol=tolerance.rel_loose, atol=tolerance.abs_loose)


def test_diagonal_agrees(backend, data_points, kernel_params,
                         reduced_problem, tolerance):
    reduced, q, QA_cost = reduced_problem
    with backend.assemble_kernel_matrix(
        data_points, kernel_params, q, QA_cost, "cg_explicit"
    ) as A:
        explicit = backend.kernel_matrix_diagonal(A)
    with backend.assemble_kernel_matrix(
        data_points, kernel_params, q, QA_cost, "cg_implicit"
    ) as A:
        implicit = backend.kernel_matrix_diagonal(A)
        packed, padding = backend.materialize(A)
        materialized = unpack_packed(backend._to_host(packed), A.num_rows,
                                     padding)
    assert_allclose(explicit, np.diag(reduced), rtol=tolerance.rel_loose,
                    atol=tolerance.abs_loose)
    assert_allclose(implicit, explicit, rtol=tolerance.rel_loose,
                    atol=tolerance.abs_loose)
    assert_allclose(materialized, reduced, rtol=tolerance.rel_loose,
                    atol=tolerance.abs_loose)


def test_kernel_matrix_from_dense(backend, spd_matrix):
    A = ExplicitKernelMatrix.from_dense(backend, spd_matrix)
    assert A.num_rows == 3
    assert A.backend == backend.name
    dense = unpack_packed(backend._to_host(A.packed), 3, A.padding)
    assert_allclose(dense, spd_matrix)
    A.release()
    assert A.packed is None


def test_assembly_logs_timing(cpu_backend, data_points):
    params = Parameter()
    _, q, QA_cost = reference_reduction(data_points, params)
    with cpu_backend.assemble_kernel_matrix(data_points, params, q, QA_cost,
                                            "cg_explicit"):
        pass
    duration = cpu_backend.logger.get_entry("kernel_matrix",
                                            "kernel_matrix_assembly")
    assert duration >= 0.0


class TestPreconditions:

    @pytest.fixture(scope="function")
    def handle(self, cpu_backend, spd_matrix):
        return cpu_backend.kernel_matrix_from_dense(spd_matrix)

    def test_empty_data(self, cpu_backend):
        with pytest.raises(PreconditionError):
            cpu_backend.assemble_kernel_matrix(np.zeros((0, 3)), Parameter(),
                                               np.zeros(0), 1.0)

    def test_q_size_mismatch(self, cpu_backend, data_points):
        with pytest.raises(PreconditionError, match="Sizes mismatch"):
            cpu_backend.assemble_kernel_matrix(data_points, Parameter(),
                                               np.zeros(3), 1.0)

    def test_unset_gamma(self, cpu_backend, data_points):
        with pytest.raises(ValueError, match="gamma"):
            cpu_backend.assemble_kernel_matrix(
                data_points, Parameter(kernel_type="rbf"),
                np.zeros(data_points.shape[0] - 1), 1.0,
            )

    def test_shape_mismatch(self, cpu_backend, handle):
        with pytest.raises(PreconditionError):
            cpu_backend.blas_level_3(1.0, handle, Matrix(2, 3), 0.0,
                                     Matrix(1, 3))
        with pytest.raises(PreconditionError, match="order"):
            cpu_backend.blas_level_3(1.0, handle, Matrix(1, 4), 0.0,
                                     Matrix(1, 4))

    def test_empty_rhs(self, cpu_backend, handle):
        with pytest.raises(PreconditionError, match="empty"):
            cpu_backend.blas_level_3(1.0, handle, Matrix(0, 3), 0.0,
                                     Matrix(0, 3))

    def test_padding_mismatch(self, cpu_backend, handle):
        with pytest.raises(PreconditionError, match="Padding mismatch"):
            cpu_backend.blas_level_3(1.0, handle, Matrix(1, 3, (1, 1)), 0.0,
                                     Matrix(1, 3, (2, 2)))

    def test_released_handle(self, cpu_backend, handle):
        handle.release()
        with pytest.raises(PreconditionError, match="released"):
            cpu_backend.blas_level_3(1.0, handle, Matrix(1, 3), 0.0,
                                     Matrix(1, 3))

    def test_foreign_handle(self, cpu_backend, cuda_backend, spd_matrix):
        handle = cuda_backend.kernel_matrix_from_dense(spd_matrix)
        with pytest.raises(PreconditionError, match="cuda"):
            cpu_backend.blas_level_3(1.0, handle, Matrix(1, 3), 0.0,
                                     Matrix(1, 3))

    def test_solver_mismatch(self, cpu_backend, handle):
        with pytest.raises(PreconditionError, match="cg_implicit"):
            cpu_backend.blas_level_3(1.0, handle, Matrix(1, 3), 0.0,
                                     Matrix(1, 3),
                                     solver=SolverType.cg_implicit)
        cpu_backend.blas_level_3(1.0, handle, Matrix(1, 3), 0.0,
                                 Matrix(1, 3), solver="automatic")
