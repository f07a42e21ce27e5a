"""Accelerator dispatch for placement kernels.

Provides backend abstraction for the numeric kernels (initial linear solve,
density and wirelength gradients) using CUDA via CuPy, with automatic
fallback to the sequential NumPy/SciPy path.

Example::

    from gplace.acceleration import get_backend, get_solver

    backend = get_backend(force_cpu=True)
    solver = get_solver(backend)
"""

from __future__ import annotations

from .backend import ArrayBackend, BackendType, detect_backend, get_backend
from .solver import BiCGSTABSolver, CUDAConjugateGradientSolver, LinearSolver, SolveResult, get_solver

__all__ = [
    "ArrayBackend",
    "BackendType",
    "BiCGSTABSolver",
    "CUDAConjugateGradientSolver",
    "LinearSolver",
    "SolveResult",
    "detect_backend",
    "get_backend",
    "get_solver",
]
