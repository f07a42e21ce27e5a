"""
Bound-to-bound quadratic initial placement.

Every net is modelled as a clique of two-pin springs whose weights are
re-linearised from the current pin spans on each outer iteration, so the
quadratic cost tracks HPWL. Each axis gives one sparse symmetric system over
the movable instances; fixed pins and IO ports enter as anchors on the
diagonal and the right-hand side.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray
from scipy.sparse.csgraph import connected_components

from gplace.acceleration import ArrayBackend, LinearSolver, get_backend, get_solver
from gplace.config import InitialPlaceConfig
from gplace.exceptions import ConvergenceFailure, DegenerateInputError
from gplace.placement.model import PlacementModel

logger = logging.getLogger(__name__)

SOLVER_TOLERANCE = 1e-6
STOP_RESIDUAL = 1e-5
MIN_OUTER_ITERATIONS = 5


@dataclass
class InitialPlaceResult:
    """Outcome of the initial placement.

    Attributes:
        iterations: Outer iterations performed.
        residual: Largest relative residual of the last x/y solves.
        failures: Solves that hit the iteration cap.
        degenerate: Unanchored components moved to the fallback point.
    """

    iterations: int = 0
    residual: float = 0.0
    failures: list[ConvergenceFailure] = field(default_factory=list)
    degenerate: list[DegenerateInputError] = field(default_factory=list)


@dataclass
class _PinPairs:
    """Clique edges of all eligible nets, as pin index pairs."""

    first: NDArray[np.int64]
    second: NDArray[np.int64]
    degree: NDArray[np.float64]
    io_edge: NDArray[np.bool_]


class InitialPlacer:
    """Builds and solves the clique systems.

    Args:
        model: Placement model; movable centres are overwritten.
        config: Initial placement settings.
        backend: Array backend selecting the solver.
        skip_io: IO pins only anchor, with unscaled weights.
        solver: Override the backend's default solver.
    """

    def __init__(
        self,
        model: PlacementModel,
        config: InitialPlaceConfig | None = None,
        backend: ArrayBackend | None = None,
        skip_io: bool = False,
        solver: LinearSolver | None = None,
    ):
        self.model = model
        self.config = config or InitialPlaceConfig()
        self.backend = backend or get_backend(force_cpu=True)
        self.skip_io = skip_io
        self.solver = solver or get_solver(self.backend)

        nl = model.netlist
        self._row = np.full(nl.num_instances, -1, dtype=np.int64)
        self._row[model.movable] = np.arange(model.num_movable)
        self._pairs = self._collect_pairs()

    def _collect_pairs(self) -> _PinPairs:
        nl = self.model.netlist
        counts = np.diff(nl.net_ptr)
        first: list[NDArray] = []
        second: list[NDArray] = []
        degree: list[NDArray] = []
        eligible = (counts >= 2) & (counts <= self.config.max_fanout)
        for d in np.unique(counts[eligible]):
            nets = np.flatnonzero(eligible & (counts == d))
            pins = nl.net_ptr[nets][:, None] + np.arange(d)[None, :]
            iu, ju = np.triu_indices(int(d), 1)
            first.append(pins[:, iu].ravel())
            second.append(pins[:, ju].ravel())
            degree.append(np.full(len(nets) * len(iu), float(d)))

        if not first:
            empty = np.zeros(0, dtype=np.int64)
            return _PinPairs(empty, empty, np.zeros(0), np.zeros(0, dtype=bool))

        p1 = np.concatenate(first)
        p2 = np.concatenate(second)
        deg = np.concatenate(degree)

        owner1 = self._pin_row(p1)
        owner2 = self._pin_row(p2)
        # Both ends immovable, or both on the same instance: no spring
        keep = ((owner1 >= 0) | (owner2 >= 0)) & ~((owner1 == owner2) & (owner1 >= 0))
        io_edge = nl.pin_is_io[p1] | nl.pin_is_io[p2]
        return _PinPairs(p1[keep], p2[keep], deg[keep], io_edge[keep])

    def _pin_row(self, pins: NDArray[np.int64]) -> NDArray[np.int64]:
        inst = self.model.netlist.pin_inst[pins]
        return np.where(inst >= 0, self._row[np.maximum(inst, 0)], -1)

    def _weights(self, pos: NDArray[np.float64]) -> NDArray[np.float64]:
        pairs = self._pairs
        span = np.maximum(np.abs(pos[pairs.first] - pos[pairs.second]), self.config.min_diff_length)
        scale = np.full(len(span), self.config.net_weight_scale)
        if self.skip_io:
            scale[pairs.io_edge] = 1.0
        return scale / (pairs.degree - 1.0) / span

    def _system(
        self, pos: NDArray[np.float64], offsets: NDArray[np.float64]
    ) -> tuple[sp.csr_matrix, NDArray[np.float64], NDArray[np.float64]]:
        """Assemble ``A c = b`` for one axis.

        Returns the matrix, the right-hand side and the anchor weight per
        row (used to detect unanchored components).
        """
        n = self.model.num_movable
        pairs = self._pairs
        w = self._weights(pos)
        r1 = self._pin_row(pairs.first)
        r2 = self._pin_row(pairs.second)
        o1 = offsets[pairs.first]
        o2 = offsets[pairs.second]

        both = (r1 >= 0) & (r2 >= 0)
        only1 = (r1 >= 0) & (r2 < 0)
        only2 = (r1 < 0) & (r2 >= 0)

        rows = [r1[both], r2[both], r1[both], r2[both], r1[only1], r2[only2]]
        cols = [r1[both], r2[both], r2[both], r1[both], r1[only1], r2[only2]]
        vals = [w[both], w[both], -w[both], -w[both], w[only1], w[only2]]
        matrix = sp.coo_matrix(
            (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))), shape=(n, n)
        ).tocsr()

        rhs = np.zeros(n)
        np.add.at(rhs, r1[both], w[both] * (o2[both] - o1[both]))
        np.add.at(rhs, r2[both], w[both] * (o1[both] - o2[both]))
        # Anchor ends sit at their absolute pin position
        np.add.at(rhs, r1[only1], w[only1] * (pos[pairs.second][only1] - o1[only1]))
        np.add.at(rhs, r2[only2], w[only2] * (pos[pairs.first][only2] - o2[only2]))

        anchor = np.zeros(n)
        np.add.at(anchor, r1[only1], w[only1])
        np.add.at(anchor, r2[only2], w[only2])
        return matrix, rhs, anchor

    def _unanchored(self, matrix: sp.csr_matrix, anchor: NDArray[np.float64]) -> list[NDArray[np.int64]]:
        """Movable components with no path to a fixed pin."""
        n_comp, labels = connected_components(matrix, directed=False)
        anchored = np.zeros(n_comp, dtype=bool)
        anchored[np.unique(labels[anchor > 0])] = True
        return [np.flatnonzero(labels == c) for c in np.flatnonzero(~anchored)]

    @staticmethod
    def _pin_rows(
        matrix: sp.csr_matrix, rhs: NDArray[np.float64], rows: NDArray[np.int64], value: float
    ) -> tuple[sp.csr_matrix, NDArray[np.float64]]:
        """Replace ``rows`` with identity rows pointing at ``value``."""
        keep = np.ones(matrix.shape[0])
        keep[rows] = 0.0
        mask = sp.diags(keep)
        pinned = sp.diags(1.0 - keep)
        rhs = rhs.copy()
        rhs[rows] = value
        return (mask @ matrix @ mask + pinned).tocsr(), rhs

    def place(self) -> InitialPlaceResult:
        """Run the outer re-linearisation loop.

        All movable instances start at the core centre. Deterministic on the
        sequential path: the same model gives bit-identical coordinates.
        """
        model = self.model
        nl = model.netlist
        result = InitialPlaceResult()
        mov = model.movable
        if model.num_movable == 0:
            logger.info("Initial placement: no movable instances")
            return result

        center_x, center_y = model.core.center
        model.cx[mov] = center_x
        model.cy[mov] = center_y
        if self.config.max_iter == 0:
            model.clamp_instances()
            return result

        degenerate_rows: NDArray[np.int64] | None = None
        for it in range(self.config.max_iter):
            px, py = model.pin_positions()
            residuals = []
            for axis, pos, offsets, fallback in (
                ("x", px, nl.pin_off_x, center_x),
                ("y", py, nl.pin_off_y, center_y),
            ):
                matrix, rhs, anchor = self._system(pos, offsets)
                if degenerate_rows is None:
                    components = self._unanchored(matrix, anchor)
                    degenerate_rows = (
                        np.concatenate(components) if components else np.zeros(0, dtype=np.int64)
                    )
                    self._record_degenerate(components, result)
                if len(degenerate_rows):
                    matrix, rhs = self._pin_rows(matrix, rhs, degenerate_rows, fallback)

                coords = model.cx if axis == "x" else model.cy
                solved = self.solver.solve(
                    matrix, rhs, coords[mov].copy(), self.config.max_solver_iter, SOLVER_TOLERANCE
                )
                coords[mov] = solved.x
                residuals.append(solved.residual)
                if not solved.converged and it == self.config.max_iter - 1:
                    failure = ConvergenceFailure(
                        "initial_place", solved.iterations, solved.residual
                    )
                    result.failures.append(failure)
                    logger.warning(
                        f"Initial placement {axis} solve hit its cap of "
                        f"{self.config.max_solver_iter} iterations (residual {solved.residual:.3e})"
                    )

            model.clamp_instances()
            result.iterations = it + 1
            result.residual = max(residuals)
            logger.info(
                f"[InitialPlace] Iter: {it + 1} CG residual: {result.residual:.6e} "
                f"HPWL: {model.hpwl():.0f}"
            )
            if result.residual <= STOP_RESIDUAL and it + 1 >= MIN_OUTER_ITERATIONS:
                break

        return result

    def _record_degenerate(self, components: list[NDArray[np.int64]], result: InitialPlaceResult) -> None:
        if not components:
            return
        names = self.model.netlist.names
        mov = self.model.movable
        fallback = self.model.core.center
        total = 0
        for rows in components:
            result.degenerate.append(DegenerateInputError([names[mov[r]] for r in rows], fallback))
            total += len(rows)
        logger.warning(
            f"{len(components)} connected component(s) ({total} instances) have no fixed "
            f"anchor; placing them at the core centre {fallback}"
        )
