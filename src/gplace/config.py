"""
Configuration for the global placer.

Every tunable is a named dataclass field carrying a default, a valid range
and a one-line description in its metadata. Fields are grouped in sections
(initial_place, nesterov, routability, timing, debug) and each field also has
a unique flat name so callers can write::

    placer.configure(target_density=0.8, routability_driven_mode=True)

Configuration files are loaded hierarchically from:
1. Project config: .gplace.toml or gplace.toml in the project root
2. User config: ~/.config/gplace/config.toml

Project config overrides user config. Values outside their range raise
ConfigurationError; unknown keys only warn.
"""

from __future__ import annotations

import copy
import math
import sys
import warnings
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from gplace.exceptions import ConfigFileError, ConfigurationError

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

# Config file names to search for in project directories
CONFIG_FILENAMES = [".gplace.toml", "gplace.toml"]

# User-level config path
USER_CONFIG_PATH = Path.home() / ".config" / "gplace" / "config.toml"


@dataclass(frozen=True)
class Range:
    """Valid range of a numeric field.

    Attributes:
        lo: Lower bound (None for unbounded).
        hi: Upper bound (None for unbounded).
        lo_open: True if ``lo`` itself is rejected.
        hi_open: True if ``hi`` itself is rejected.
    """

    lo: float | None = None
    hi: float | None = None
    lo_open: bool = False
    hi_open: bool = False

    def contains(self, value: float) -> bool:
        if not math.isfinite(value):
            return False
        if self.lo is not None:
            if value < self.lo or (self.lo_open and value == self.lo):
                return False
        if self.hi is not None:
            if value > self.hi or (self.hi_open and value == self.hi):
                return False
        return True

    def __str__(self) -> str:
        left = "(" if self.lo_open or self.lo is None else "["
        right = ")" if self.hi_open or self.hi is None else "]"
        lo = "-inf" if self.lo is None else f"{self.lo:g}"
        hi = "inf" if self.hi is None else f"{self.hi:g}"
        return f"{left}{lo}, {hi}{right}"


POSITIVE = Range(0, None, lo_open=True)
NON_NEGATIVE = Range(0, None)
UNIT_OPEN_LOW = Range(0, 1, lo_open=True)
UNIT = Range(0, 1)


def _opt(default: Any, doc: str, valid: Range | None = None, flat: str | None = None, **kw: Any):
    """Declare a config field with its range and description."""
    metadata = {"doc": doc, "range": valid}
    if flat is not None:
        metadata["flat"] = flat
    if "default_factory" in kw:
        return field(default_factory=kw["default_factory"], metadata=metadata)
    return field(default=default, metadata=metadata)


@dataclass
class InitialPlaceConfig:
    """Bound-to-bound quadratic initial placement."""

    max_iter: int = _opt(
        20, "Outer re-linearisation iterations (0 skips the solve)", NON_NEGATIVE,
        flat="initial_place_max_iter",
    )
    min_diff_length: float = _opt(
        1.5, "Minimum pin span used in clique edge weights", POSITIVE,
        flat="initial_place_min_diff_length",
    )
    max_solver_iter: int = _opt(
        100, "Krylov solver iteration cap per axis", Range(1, None),
        flat="initial_place_max_solver_iter",
    )
    max_fanout: int = _opt(
        200, "Nets with more pins are skipped", Range(2, None),
        flat="initial_place_max_fanout",
    )
    net_weight_scale: float = _opt(
        800.0, "Global multiplier on clique edge weights", POSITIVE,
        flat="initial_place_net_weight_scale",
    )


@dataclass
class NesterovConfig:
    """Nesterov global placement loop."""

    max_iter: int = _opt(
        5000, "Iteration cap of the optimization loop", NON_NEGATIVE,
        flat="nesterov_max_iter",
    )
    bin_grid_count_x: int = _opt(0, "Bins along x (0 = automatic)", Range(0, 1024))
    bin_grid_count_y: int = _opt(0, "Bins along y (0 = automatic)", Range(0, 1024))
    target_density: float = _opt(0.7, "Target bin utilisation", UNIT_OPEN_LOW)
    uniform_target_density_mode: bool = _opt(
        False, "Use movable area / white space as the target density"
    )
    target_overflow: float = _opt(0.1, "Overflow at which the loop stops", UNIT_OPEN_LOW)
    init_density_penalty: float = _opt(8e-5, "Initial density penalty factor", POSITIVE)
    init_wirelength_coef: float = _opt(0.25, "Initial wirelength smoothing coefficient", POSITIVE)
    min_phi_coef: float = _opt(0.95, "Lower bound of the penalty multiplier", UNIT_OPEN_LOW)
    max_phi_coef: float = _opt(1.05, "Upper bound of the penalty multiplier", Range(1, None))
    reference_hpwl: float = _opt(
        446000000.0, "HPWL change that maps to the minimum multiplier", POSITIVE
    )
    max_backtrack: int = _opt(10, "Step length backtracking attempts", Range(1, None))


@dataclass
class RoutabilityConfig:
    """Congestion-driven cell inflation."""

    routability_driven_mode: bool = _opt(False, "Enable routability feedback")
    routability_check_overflow: float = _opt(
        0.20, "Overflow at or below which the router is consulted", UNIT
    )
    routability_max_density: float = _opt(
        0.99, "Density above which bins inflate; cap on the raised target density", UNIT_OPEN_LOW
    )
    routability_max_bloat_iter: int = _opt(
        1, "Times a single instance may be inflated", NON_NEGATIVE
    )
    routability_max_inflation_iter: int = _opt(
        4, "Times the router may be consulted per run", NON_NEGATIVE
    )
    routability_target_rc_metric: float = _opt(
        1.25, "RC metric below which no inflation happens", POSITIVE
    )
    routability_inflation_ratio_coef: float = _opt(
        2.5, "Exponent applied to bin usage ratios", NON_NEGATIVE
    )
    routability_max_inflation_ratio: float = _opt(
        2.5, "Cap on a single inflation area ratio", Range(1, None)
    )
    routability_rc_k1: float = _opt(1.0, "Weight of the top 0.5% congestion", NON_NEGATIVE)
    routability_rc_k2: float = _opt(1.0, "Weight of the top 1% congestion", NON_NEGATIVE)
    routability_rc_k3: float = _opt(0.0, "Weight of the top 2% congestion", NON_NEGATIVE)
    routability_rc_k4: float = _opt(0.0, "Weight of the top 5% congestion", NON_NEGATIVE)


@dataclass
class TimingConfig:
    """Timing-driven net reweighting."""

    timing_driven_mode: bool = _opt(False, "Enable timing feedback")
    timing_net_weight_overflows: list[int] = _opt(
        None,
        "Overflow percentages at which nets are reweighted",
        Range(0, 100),
        default_factory=lambda: [79, 64, 49, 29, 21, 15],
    )
    timing_net_weight_max: float = _opt(1.9, "Cap on a net's timing weight", Range(1, None))
    timing_critical_fraction: float = _opt(
        0.1, "Fraction of nets treated as critical at a checkpoint", UNIT_OPEN_LOW
    )


@dataclass
class DebugConfig:
    """Observer cadence for visualization hooks."""

    debug_pause_iterations: int = _opt(10, "Pause the observer every N iterations (0 = never)", NON_NEGATIVE)
    debug_update_iterations: int = _opt(10, "Update the observer every N iterations (0 = never)", NON_NEGATIVE)
    debug_draw_bins: bool = _opt(False, "Include the bin density map in snapshots")
    debug_initial: bool = _opt(False, "Also notify the observer after initial placement")
    debug_instance: str | None = _opt(None, "Only report this instance to the observer")


@dataclass
class PlacerConfig:
    """Merged placer configuration.

    Attributes:
        initial_place: Initial placement settings.
        nesterov: Optimization loop settings.
        routability: Routability feedback settings.
        timing: Timing feedback settings.
        debug: Observer settings.
        force_cpu: Pin numeric kernels to the sequential NumPy/SciPy path.
        skip_io_mode: Treat IO pins as fixed anchors only.
        pad_left: Density padding added on the left of movable cells.
        pad_right: Density padding added on the right of movable cells.
    """

    initial_place: InitialPlaceConfig = field(default_factory=InitialPlaceConfig)
    nesterov: NesterovConfig = field(default_factory=NesterovConfig)
    routability: RoutabilityConfig = field(default_factory=RoutabilityConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    debug: DebugConfig = field(default_factory=DebugConfig)
    force_cpu: bool = _opt(False, "Disable accelerator backends")
    skip_io_mode: bool = _opt(False, "IO pins act as fixed anchors only")
    pad_left: float = _opt(0.0, "Left density padding per movable cell", NON_NEGATIVE)
    pad_right: float = _opt(0.0, "Right density padding per movable cell", NON_NEGATIVE)

    # Track which file each setting came from
    _sources: dict = field(default_factory=dict, repr=False, compare=False)

    # ------------------------------------------------------------------
    # Flat access
    # ------------------------------------------------------------------

    def get(self, name: str) -> Any:
        """Return the value of a flat field name."""
        section, attr = _lookup(name)
        target = self if section is None else getattr(self, section)
        return getattr(target, attr)

    def replace(self, **overrides: Any) -> PlacerConfig:
        """Return a validated copy with flat-named fields overridden.

        Raises:
            ConfigurationError: If a name is unknown or a value is out of range.
        """
        new = copy.deepcopy(self)
        for name, value in overrides.items():
            section, attr = _lookup(name)
            target = new if section is None else getattr(new, section)
            if isinstance(value, (list, tuple)):
                value = list(value)
            setattr(target, attr, value)
        new.validate()
        return new

    def validate(self) -> None:
        """Check every field against its range.

        Raises:
            ConfigurationError: On the first invalid field.
        """
        for flat, (section, attr) in FIELD_INDEX.items():
            target = self if section is None else getattr(self, section)
            _check_value(flat, getattr(target, attr), _FIELD_SPECS[flat])

        nv = self.nesterov
        if nv.min_phi_coef > nv.max_phi_coef:
            raise ConfigurationError(
                "min_phi_coef",
                nv.min_phi_coef,
                valid_range=f"<= max_phi_coef ({nv.max_phi_coef})",
            )
        rb = self.routability
        ks = (rb.routability_rc_k1, rb.routability_rc_k2, rb.routability_rc_k3, rb.routability_rc_k4)
        if sum(ks) <= 0:
            raise ConfigurationError(
                "routability_rc_k1",
                ks,
                valid_range="at least one coefficient > 0",
            )

    def to_dict(self) -> dict[str, Any]:
        """Flat name to value mapping."""
        return {name: self.get(name) for name in FIELD_INDEX}

    # ------------------------------------------------------------------
    # File loading
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, start_dir: Path | None = None) -> PlacerConfig:
        """
        Load configuration with precedence: project > user > defaults.

        Args:
            start_dir: Directory to start searching from (default: current directory)

        Returns:
            Merged, validated configuration object
        """
        if start_dir is None:
            start_dir = Path.cwd()

        config = cls()
        sources: dict[str, str] = {}

        if USER_CONFIG_PATH.exists():
            _merge_config(config, _load_toml_file(USER_CONFIG_PATH), str(USER_CONFIG_PATH), sources)

        project_config = _find_project_config(start_dir)
        if project_config:
            _merge_config(config, _load_toml_file(project_config), str(project_config), sources)

        config.validate()
        config._sources = sources
        return config

    @classmethod
    def from_file(cls, path: Path) -> PlacerConfig:
        """Load a single config file on top of the defaults."""
        config = cls()
        sources: dict[str, str] = {}
        _merge_config(config, _load_toml_file(path), str(path), sources)
        config.validate()
        config._sources = sources
        return config

    def get_source(self, key: str) -> str:
        """Get the source file for a config key."""
        return self._sources.get(key, "default")


SECTIONS = ("initial_place", "nesterov", "routability", "timing", "debug")
_SECTION_TYPES = {
    "initial_place": InitialPlaceConfig,
    "nesterov": NesterovConfig,
    "routability": RoutabilityConfig,
    "timing": TimingConfig,
    "debug": DebugConfig,
}


def _build_index() -> tuple[dict[str, tuple[str | None, str]], dict[str, Any]]:
    index: dict[str, tuple[str | None, str]] = {}
    specs: dict[str, Any] = {}
    for section, section_type in _SECTION_TYPES.items():
        for f in fields(section_type):
            flat = f.metadata.get("flat", f.name)
            index[flat] = (section, f.name)
            specs[flat] = f
    for f in fields(PlacerConfig):
        if f.name in _SECTION_TYPES or f.name.startswith("_"):
            continue
        index[f.name] = (None, f.name)
        specs[f.name] = f
    return index, specs


FIELD_INDEX, _FIELD_SPECS = _build_index()


def _lookup(name: str) -> tuple[str | None, str]:
    try:
        return FIELD_INDEX[name]
    except KeyError:
        raise ConfigurationError(
            name,
            None,
            message=f"Unknown configuration field '{name}'",
            suggestions=[f"Known fields: {', '.join(sorted(FIELD_INDEX))}"],
        ) from None


def _check_value(name: str, value: Any, spec: Any) -> None:
    valid: Range | None = spec.metadata.get("range")
    default = spec.default
    if spec.type in ("bool",) or isinstance(default, bool):
        if not isinstance(value, bool):
            raise ConfigurationError(name, value, valid_range="bool")
        return
    if name == "debug_instance":
        if value is not None and not isinstance(value, str):
            raise ConfigurationError(name, value, valid_range="instance name or None")
        return
    if name == "timing_net_weight_overflows":
        if not isinstance(value, list):
            raise ConfigurationError(name, value, valid_range="list of percentages")
        for item in value:
            if isinstance(item, bool) or not isinstance(item, int) or not valid.contains(item):
                raise ConfigurationError(name, value, valid_range=f"integers in {valid}")
        return
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError(name, value, valid_range=f"integer in {valid}")
    elif isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(name, value, valid_range=str(valid))
    if valid is not None and not valid.contains(float(value)):
        raise ConfigurationError(name, value, valid_range=str(valid))


def _find_project_config(start_dir: Path) -> Path | None:
    """
    Find project config by walking up the directory tree.

    Stops at .git directory or filesystem root.
    """
    current = start_dir.resolve()

    while True:
        for filename in CONFIG_FILENAMES:
            config_path = current / filename
            if config_path.is_file():
                return config_path

        if (current / ".git").exists():
            break

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def _load_toml_file(path: Path) -> dict[str, Any]:
    """
    Load a TOML file.

    Raises:
        ConfigFileError: If the file cannot be read or is invalid TOML
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigFileError(f"Invalid TOML in {path}: {e}", {"file": str(path)}) from e
    except OSError as e:
        raise ConfigFileError(f"Cannot read config file {path}: {e}", {"file": str(path)}) from e


def _merge_config(
    config: PlacerConfig, data: dict[str, Any], source: str, sources: dict[str, str]
) -> None:
    """
    Merge loaded config data into a PlacerConfig.

    Sections map to the nested dataclasses and use the short field names;
    top-level keys use the flat names of the top-level fields.
    """
    top_level = {name for name, (section, _) in FIELD_INDEX.items() if section is None}

    for key, value in data.items():
        if key in _SECTION_TYPES:
            if not isinstance(value, dict):
                raise ConfigFileError(f"Section '{key}' must be a table", {"file": source})
            target = getattr(config, key)
            known = {f.name for f in fields(_SECTION_TYPES[key])}
            for sub_key, sub_value in value.items():
                if sub_key not in known:
                    warnings.warn(f"Unknown config key '{key}.{sub_key}' in {source}", stacklevel=3)
                    continue
                setattr(target, sub_key, sub_value)
                sources[f"{key}.{sub_key}"] = source
        elif key in top_level:
            setattr(config, key, value)
            sources[key] = source
        else:
            warnings.warn(f"Unknown config key '{key}' in {source}", stacklevel=3)


def generate_template() -> str:
    """
    Generate a template config file with all options documented.

    Returns:
        Template TOML string
    """
    lines = [
        "# gplace configuration file",
        "# Place as .gplace.toml in the project root or ~/.config/gplace/config.toml",
        "",
    ]
    defaults = PlacerConfig()
    for f in fields(PlacerConfig):
        if f.name in _SECTION_TYPES or f.name.startswith("_"):
            continue
        lines.extend(_template_entry(f, getattr(defaults, f.name)))
    for section, section_type in _SECTION_TYPES.items():
        lines.append("")
        lines.append(f"[{section}]")
        values = getattr(defaults, section)
        for f in fields(section_type):
            lines.extend(_template_entry(f, getattr(values, f.name)))
    return "\n".join(lines) + "\n"


def _template_entry(f: Any, value: Any) -> list[str]:
    doc = f.metadata.get("doc", "")
    valid = f.metadata.get("range")
    comment = f"# {doc}" + (f" {valid}" if valid is not None and not isinstance(value, bool) else "")
    if value is None:
        rendered = '""'
    elif isinstance(value, bool):
        rendered = "true" if value else "false"
    elif isinstance(value, list):
        rendered = "[" + ", ".join(str(v) for v in value) + "]"
    else:
        rendered = repr(value)
    return [comment, f"# {f.name} = {rendered}"]


def get_config_paths(start_dir: Path | None = None) -> dict[str, Path | None]:
    """Return the user and project config paths that would be loaded."""
    if start_dir is None:
        start_dir = Path.cwd()
    return {
        "user": USER_CONFIG_PATH if USER_CONFIG_PATH.exists() else None,
        "project": _find_project_config(start_dir),
    }


__all__ = [
    "PlacerConfig",
    "InitialPlaceConfig",
    "NesterovConfig",
    "RoutabilityConfig",
    "TimingConfig",
    "DebugConfig",
    "Range",
    "FIELD_INDEX",
    "generate_template",
    "get_config_paths",
]
