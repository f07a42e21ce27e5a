"""Sparse Krylov solvers for the initial placement systems.

The sequential path uses SciPy's BiCGSTAB. The CUDA path moves the system to
the device with ``cupyx.scipy.sparse`` and uses conjugate gradients, which
is valid because the clique systems are symmetric positive definite once
unanchored components are pinned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray
from scipy.sparse.linalg import bicgstab

from gplace.acceleration.backend import ArrayBackend, BackendType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SolveResult:
    """Outcome of one linear solve.

    Attributes:
        x: Solution (or best approximation) as a NumPy array.
        converged: True if the solver met its tolerance.
        iterations: Iterations performed (the cap when not converged).
        residual: Relative residual ||b - Ax|| / ||b||.
    """

    x: NDArray[np.float64]
    converged: bool
    iterations: int
    residual: float


class LinearSolver(Protocol):
    """Strategy interface for solving ``A x = b``."""

    def solve(
        self,
        matrix: sp.csr_matrix,
        rhs: NDArray[np.float64],
        x0: NDArray[np.float64],
        max_iter: int,
        tol: float,
    ) -> SolveResult: ...


def _relative_residual(matrix: sp.csr_matrix, rhs: NDArray[np.float64], x: NDArray[np.float64]) -> float:
    norm_b = float(np.linalg.norm(rhs))
    residual = float(np.linalg.norm(rhs - matrix @ x))
    return residual / norm_b if norm_b > 0 else residual


class BiCGSTABSolver:
    """Reference sequential solver (SciPy BiCGSTAB)."""

    def solve(
        self,
        matrix: sp.csr_matrix,
        rhs: NDArray[np.float64],
        x0: NDArray[np.float64],
        max_iter: int,
        tol: float,
    ) -> SolveResult:
        iterations = 0

        def _count(_xk: NDArray[np.float64]) -> None:
            nonlocal iterations
            iterations += 1

        x, info = bicgstab(matrix, rhs, x0=x0, rtol=tol, atol=0.0, maxiter=max_iter, callback=_count)
        if info < 0:
            logger.debug(f"BiCGSTAB breakdown (info={info}), keeping the last iterate")
        if not np.all(np.isfinite(x)):
            x = x0.copy()
        return SolveResult(
            x=np.asarray(x, dtype=np.float64),
            converged=info == 0,
            iterations=iterations,
            residual=_relative_residual(matrix, rhs, x),
        )


class CUDAConjugateGradientSolver:
    """Accelerated solver using ``cupyx.scipy.sparse.linalg.cg``."""

    def __init__(self, backend: ArrayBackend):
        self._backend = backend

    def solve(
        self,
        matrix: sp.csr_matrix,
        rhs: NDArray[np.float64],
        x0: NDArray[np.float64],
        max_iter: int,
        tol: float,
    ) -> SolveResult:
        import cupyx.scipy.sparse as csp
        from cupyx.scipy.sparse.linalg import cg

        xp = self._backend.xp
        iterations = 0

        def _count(_xk: object) -> None:
            nonlocal iterations
            iterations += 1

        x_dev, info = cg(
            csp.csr_matrix(matrix),
            xp.asarray(rhs),
            x0=xp.asarray(x0),
            tol=tol,
            maxiter=max_iter,
            callback=_count,
        )
        x = self._backend.to_numpy(x_dev)
        if not np.all(np.isfinite(x)):
            x = x0.copy()
        return SolveResult(
            x=np.asarray(x, dtype=np.float64),
            converged=info == 0,
            iterations=iterations,
            residual=_relative_residual(matrix, rhs, x),
        )


def get_solver(backend: ArrayBackend) -> LinearSolver:
    """Pick the solver matching the array backend."""
    if backend.backend_type == BackendType.CUDA:
        return CUDAConjugateGradientSolver(backend)
    return BiCGSTABSolver()
