"""
Custom exception hierarchy for gplace.

Provides consistent error handling with context, suggestions, and actionable guidance.
All exceptions include:
- Context information (field names, iteration counts, failing phase, etc.)
- Suggestions for how to fix the issue
- Clear, formatted error messages

Only configuration, design and external-engine errors are raised by the
placer. Numerical non-convergence and degenerate-input recovery are
recorded on the placement result and logged instead.

Example::

    from gplace.exceptions import ConfigurationError

    raise ConfigurationError("target_density", 1.5, valid_range="(0, 1]")
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class GPlaceError(Exception):
    """
    Base exception for all gplace errors.

    Provides consistent formatting with context and suggestions.

    Attributes:
        context: Dictionary of contextual information (field, iteration, etc.)
        suggestions: List of actionable suggestions for fixing the error
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ):
        self.message = message
        self.context = context or {}
        self.suggestions = suggestions or []
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with context and suggestions."""
        parts = [self.message]

        if self.context:
            parts.append("\n\nContext:")
            for key, value in self.context.items():
                parts.append(f"\n  {key}: {value}")

        if self.suggestions:
            parts.append("\n\nSuggestions:")
            for suggestion in self.suggestions:
                parts.append(f"\n  - {suggestion}")

        return "".join(parts)

    def __str__(self) -> str:
        return self._format_message()


class ConfigurationError(GPlaceError):
    """
    A configuration field is outside its valid range.

    Raised immediately by ``configure()``; the run does not start and the
    previous configuration stays in effect.

    Example::

        raise ConfigurationError("target_density", 0.0, valid_range="(0, 1]")

    Attributes:
        field: Name of the offending field
        value: The rejected value
        valid_range: Human-readable description of the accepted values
    """

    def __init__(
        self,
        field: str,
        value: Any,
        valid_range: Optional[str] = None,
        message: Optional[str] = None,
        suggestions: Optional[List[str]] = None,
    ):
        self.field = field
        self.value = value
        self.valid_range = valid_range
        ctx: Dict[str, Any] = {"field": field, "value": value}
        if valid_range is not None:
            ctx["valid range"] = valid_range
        super().__init__(
            message or f"Invalid value for '{field}': {value!r}",
            ctx,
            suggestions,
        )


class ConfigFileError(GPlaceError):
    """A configuration file could not be read or parsed."""

    pass


class DesignError(GPlaceError):
    """
    The design handed to the placer is malformed.

    Raised when building the placement model, e.g. for duplicate instance
    names, nets referencing unknown instances, or an empty core area.
    """

    pass


class ConvergenceFailure(GPlaceError):
    """
    An iterative phase hit its iteration cap without reaching its target.

    Non-fatal: the placer records this on the result, logs a warning and
    still returns the best available coordinates.

    Attributes:
        phase: Phase that did not converge ("initial_place", "nesterov")
        iterations: Iterations spent
        residual: Final residual (linear solve) or overflow (optimizer)
    """

    def __init__(
        self,
        phase: str,
        iterations: int,
        residual: float,
        message: Optional[str] = None,
    ):
        self.phase = phase
        self.iterations = iterations
        self.residual = residual
        super().__init__(
            message or f"{phase} did not converge within {iterations} iterations",
            {"phase": phase, "iterations": iterations, "residual": residual},
        )


class DegenerateInputError(GPlaceError):
    """
    Movable instances are not anchored to any fixed pin.

    Locally recovered: the instances are placed at the fallback coordinate
    and the placer continues.

    Attributes:
        instances: Names of the unanchored instances
        fallback: (x, y) coordinate assigned to them
    """

    def __init__(
        self,
        instances: Sequence[str],
        fallback: tuple[float, float],
    ):
        self.instances = list(instances)
        self.fallback = fallback
        shown = ", ".join(self.instances[:5])
        if len(self.instances) > 5:
            shown += f", ... ({len(self.instances)} total)"
        super().__init__(
            "Connected component has no fixed anchor",
            {"instances": shown, "fallback": fallback},
            ["Connect the component to a fixed instance or IO pin"],
        )


class ExternalEngineError(GPlaceError):
    """
    The global router or timing engine failed.

    Aborts the run: routability and timing state are required once their
    modes are enabled.

    Attributes:
        phase: "routability" or "timing"
    """

    def __init__(
        self,
        phase: str,
        cause: Optional[BaseException] = None,
        iteration: Optional[int] = None,
    ):
        self.phase = phase
        self.cause = cause
        ctx: Dict[str, Any] = {"phase": phase}
        if iteration is not None:
            ctx["iteration"] = iteration
        if cause is not None:
            ctx["cause"] = f"{type(cause).__name__}: {cause}"
        super().__init__(f"External engine failed during {phase} feedback", ctx)


__all__ = [
    "GPlaceError",
    "ConfigurationError",
    "ConfigFileError",
    "DesignError",
    "ConvergenceFailure",
    "DegenerateInputError",
    "ExternalEngineError",
]
