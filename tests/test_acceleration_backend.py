"""Tests for the array backend and sparse solver dispatch."""

from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sp

from gplace.acceleration import (
    ArrayBackend,
    BackendType,
    BiCGSTABSolver,
    get_backend,
    get_solver,
)


class TestBackendType:
    """Tests for BackendType enum."""

    def test_backend_type_values(self):
        """Test BackendType enum values."""
        assert BackendType.CUDA.value == "cuda"
        assert BackendType.CPU.value == "cpu"


class TestCPUBackend:
    """Tests for the NumPy backend."""

    @pytest.fixture
    def backend(self):
        """Create CPU backend instance."""
        return get_backend(force_cpu=True)

    def test_backend_type(self, backend):
        """force_cpu always yields the CPU backend."""
        assert backend.backend_type == BackendType.CPU
        assert backend.is_gpu is False
        assert backend.xp is np

    def test_cached(self, backend):
        """Backends are cached per type."""
        assert get_backend(BackendType.CPU) is backend
        assert get_backend("cpu") is backend

    def test_unknown_backend_name(self):
        with pytest.raises(ValueError, match="Unknown backend type"):
            get_backend("metal")

    def test_array_defaults_to_float64(self, backend):
        arr = backend.array([1, 2, 3])
        assert isinstance(arr, np.ndarray)
        assert arr.dtype == np.float64
        assert backend.zeros((3, 4)).shape == (3, 4)
        np.testing.assert_array_equal(backend.full(3, 2.5), [2.5, 2.5, 2.5])

    def test_scatter_add_accumulates_duplicates(self, backend):
        """Repeated indices add up instead of overwriting."""
        target = backend.zeros(3)
        backend.scatter_add(target, np.array([0, 2, 2, 2]), np.array([1.0, 1.0, 2.0, 3.0]))
        np.testing.assert_allclose(target, [1.0, 0.0, 6.0])

    def test_scatter_max(self, backend):
        target = backend.full(2, -np.inf)
        backend.scatter_max(target, np.array([0, 0, 1]), np.array([3.0, 5.0, -1.0]))
        np.testing.assert_allclose(target, [5.0, -1.0])

    def test_to_numpy_passthrough(self, backend):
        arr = np.arange(4.0)
        assert backend.to_numpy(arr) is arr

    def test_direct_construction(self):
        backend = ArrayBackend(BackendType.CPU)
        assert repr(backend) == "ArrayBackend(cpu)"


class TestBiCGSTABSolver:
    """Tests for the sequential Krylov solver."""

    @staticmethod
    def _laplacian(n: int) -> sp.csr_matrix:
        main = np.full(n, 2.0)
        main[0] = main[-1] = 3.0
        off = np.full(n - 1, -1.0)
        return sp.diags([off, main, off], [-1, 0, 1], format="csr")

    def test_selected_for_cpu(self):
        assert isinstance(get_solver(get_backend(force_cpu=True)), BiCGSTABSolver)

    def test_solves_spd_system(self):
        """Converges on a small symmetric positive definite system."""
        matrix = self._laplacian(20)
        expected = np.linspace(0.0, 10.0, 20)
        rhs = matrix @ expected
        result = BiCGSTABSolver().solve(matrix, rhs, np.zeros(20), max_iter=200, tol=1e-10)
        assert result.converged
        assert result.iterations > 0
        assert result.residual < 1e-8
        np.testing.assert_allclose(result.x, expected, atol=1e-6)

    def test_iteration_cap_reports_not_converged(self):
        """Hitting the cap returns the last iterate with converged=False."""
        matrix = self._laplacian(200)
        rhs = np.sin(np.linspace(0.0, 20.0, 200))
        result = BiCGSTABSolver().solve(matrix, rhs, np.zeros(200), max_iter=1, tol=1e-14)
        assert not result.converged
        assert result.residual > 1e-14
        assert np.all(np.isfinite(result.x))
