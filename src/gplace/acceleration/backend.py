"""Array backend abstraction for placement kernels.

Provides a unified interface for NumPy and CuPy (CUDA) array operations so
the density and wirelength kernels run unchanged on either device.

The backend abstraction uses duck typing - any library that provides
NumPy-compatible array operations can be used as a backend.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)


class BackendType(Enum):
    """Available array computation backends."""

    CPU = "cpu"
    CUDA = "cuda"


_detected_backend: BackendType | None = None


def detect_backend() -> BackendType:
    """Detect the best available backend.

    Checks for CUDA (CuPy) first, falling back to CPU. The result is cached
    for the life of the process.

    Returns:
        The detected BackendType.
    """
    global _detected_backend

    if _detected_backend is not None:
        return _detected_backend

    try:
        import cupy as cp

        # Verify CUDA is actually available
        if cp.cuda.runtime.getDeviceCount() > 0:
            _detected_backend = BackendType.CUDA
            logger.info("GPU backend detected: CUDA (CuPy)")
            return _detected_backend
    except ImportError:
        pass
    except Exception as e:
        logger.debug(f"CUDA check failed: {e}")

    _detected_backend = BackendType.CPU
    logger.info("GPU backend: CPU (NumPy)")
    return _detected_backend


class ArrayBackend:
    """Unified array backend abstraction for CPU/GPU computation.

    Example::

        backend = ArrayBackend(BackendType.CPU)

        density = backend.zeros((64, 64))
        backend.scatter_add(density.ravel(), flat_bins, areas)
        result = backend.to_numpy(density)
    """

    def __init__(self, backend_type: BackendType):
        """Initialize the array backend.

        Args:
            backend_type: Type of backend to use.
        """
        self._backend_type = backend_type
        self._xp: Any = None
        self._initialize()

    def _initialize(self) -> None:
        """Initialize the underlying array library."""
        if self._backend_type == BackendType.CUDA:
            try:
                import cupy as cp

                self._xp = cp
            except ImportError:
                logger.warning("CuPy not available, falling back to NumPy")
                self._xp = np
                self._backend_type = BackendType.CPU
        else:
            self._xp = np

    @property
    def backend_type(self) -> BackendType:
        """Return the backend type."""
        return self._backend_type

    @property
    def is_gpu(self) -> bool:
        """Return True if this is a GPU backend."""
        return self._backend_type == BackendType.CUDA

    @property
    def xp(self) -> Any:
        """Return the underlying array library module."""
        return self._xp

    def array(self, data: Any, dtype: Any = np.float64) -> Any:
        """Create an array on the backend's device."""
        return self._xp.asarray(data, dtype=dtype)

    def zeros(self, shape: tuple[int, ...] | int, dtype: Any = np.float64) -> Any:
        """Create a zero-filled array."""
        return self._xp.zeros(shape, dtype=dtype)

    def full(self, shape: tuple[int, ...] | int, fill_value: Any, dtype: Any = np.float64) -> Any:
        """Create an array filled with a value."""
        return self._xp.full(shape, fill_value, dtype=dtype)

    def scatter_add(self, target: Any, indices: Any, values: Any) -> Any:
        """Accumulate ``values`` into ``target`` at ``indices`` in place.

        Duplicate indices accumulate, unlike ``target[indices] += values``.
        """
        if self._backend_type == BackendType.CUDA:
            import cupyx

            cupyx.scatter_add(target, indices, values)
        else:
            np.add.at(target, indices, values)
        return target

    def scatter_max(self, target: Any, indices: Any, values: Any) -> Any:
        """Keep the running maximum of ``values`` per index in place."""
        if self._backend_type == BackendType.CUDA:
            import cupyx

            cupyx.scatter_max(target, indices, values)
        else:
            np.maximum.at(target, indices, values)
        return target

    def to_numpy(self, arr: Any) -> np.ndarray:
        """Convert an array from this backend to NumPy."""
        if isinstance(arr, np.ndarray):
            return arr
        if self._backend_type == BackendType.CUDA:
            return arr.get()
        return np.asarray(arr)

    def __repr__(self) -> str:
        return f"ArrayBackend({self._backend_type.value})"


_array_backend_cache: dict[BackendType, ArrayBackend] = {}


def get_backend(backend_type: BackendType | str | None = None, force_cpu: bool = False) -> ArrayBackend:
    """Get an ArrayBackend instance.

    Args:
        backend_type: Specific backend to use. If None, auto-detects.
        force_cpu: Always return the CPU backend (determinism, or hosts
            without accelerator support).

    Returns:
        ArrayBackend instance for the requested or detected backend.
    """
    if force_cpu:
        backend_type = BackendType.CPU
    elif backend_type is None:
        backend_type = detect_backend()
    elif isinstance(backend_type, str):
        try:
            backend_type = BackendType(backend_type.lower())
        except ValueError:
            raise ValueError(
                f"Unknown backend type: {backend_type}. "
                f"Valid options: {[b.value for b in BackendType]}"
            ) from None

    if backend_type in _array_backend_cache:
        return _array_backend_cache[backend_type]

    backend = ArrayBackend(backend_type)
    _array_backend_cache[backend_type] = backend
    return backend
