"""
nullflow/config.py
══════════════════

Analysis options.

Options are read from a JSON object whose keys use the external camelCase
names (``treatUnconstrainedGenericsAsNullable``...); the snake_case
attribute names are accepted as well.  Command-line flags override values
loaded from a file through :meth:`AnalysisOptions.replace`.

Example option file::

    {
      "treatUnconstrainedGenericsAsNullable": true,
      "suppressForgivingOperatorDiagnostics": false,
      "maxFixedPointIterationsPerProcedure": 10000,
      "workers": 4,
      "suppress": ["RedundantNullCheck"]
    }
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from nullflow.errors import OptionsError

_KEYS: Dict[str, str] = {
    "treatUnconstrainedGenericsAsNullable": "treat_unconstrained_generics_as_nullable",
    "suppressForgivingOperatorDiagnostics": "suppress_forgiving_operator_diagnostics",
    "maxFixedPointIterationsPerProcedure": "max_fixed_point_iterations_per_procedure",
    "workers": "workers",
    "suppress": "suppress",
}


@dataclass(frozen=True)
class AnalysisOptions:
    """Recognized analysis options.

    Attributes
    ----------
    treat_unconstrained_generics_as_nullable : bool
        ``Unconstrained`` bindings are treated as nullable (conservative).
    suppress_forgiving_operator_diagnostics : bool
        ``e!`` silences diagnostics about ``e``.
    max_fixed_point_iterations_per_procedure : int or None
        Worklist iteration cap per procedure; ``None`` is unbounded.
    workers : int
        Number of procedures analysed in parallel.
    suppress : tuple of str
        Diagnostic kinds dropped from the report.
    """
    treat_unconstrained_generics_as_nullable: bool = True
    suppress_forgiving_operator_diagnostics: bool = True
    max_fixed_point_iterations_per_procedure: Optional[int] = None
    workers: int = 1
    suppress: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        cap = self.max_fixed_point_iterations_per_procedure
        if cap is not None and (isinstance(cap, bool) or not isinstance(cap, int) or cap < 1):
            raise OptionsError(
                f"maxFixedPointIterationsPerProcedure must be a positive integer, not {cap!r}"
            )
        if isinstance(self.workers, bool) or not isinstance(self.workers, int) or self.workers < 1:
            raise OptionsError(f"workers must be a positive integer, not {self.workers!r}")
        for name in (
            "treat_unconstrained_generics_as_nullable",
            "suppress_forgiving_operator_diagnostics",
        ):
            if not isinstance(getattr(self, name), bool):
                raise OptionsError(f"{name} must be a boolean")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> AnalysisOptions:
        """Build options from a mapping; unknown keys are an error."""
        if not isinstance(data, Mapping):
            raise OptionsError("options must be a JSON object")
        fields = {f.name for f in dataclasses.fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = _KEYS.get(key, key)
            if name not in fields:
                raise OptionsError(f"unknown option: {key!r}")
            if name == "suppress":
                if isinstance(value, str) or not isinstance(value, (list, tuple)):
                    raise OptionsError("suppress must be a list of diagnostic kinds")
                value = tuple(str(v) for v in value)
            kwargs[name] = value
        return cls(**kwargs)

    def replace(self, **changes: Any) -> AnalysisOptions:
        """Copy with *changes* applied; ``None`` values are ignored."""
        return dataclasses.replace(
            self, **{k: v for k, v in changes.items() if v is not None}
        )

    def to_dict(self) -> Dict[str, Any]:
        reverse = {v: k for k, v in _KEYS.items()}
        return {
            reverse[f.name]: (
                list(getattr(self, f.name)) if f.name == "suppress"
                else getattr(self, f.name)
            )
            for f in dataclasses.fields(self)
        }


def load_options(path: Union[str, Path]) -> AnalysisOptions:
    """Read an option file.

    Raises
    ------
    OptionsError
        If the file cannot be read or does not hold valid options.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except OSError as exc:
        raise OptionsError(f"cannot read options file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise OptionsError(f"{path}: invalid JSON: {exc}") from exc
    return AnalysisOptions.from_mapping(data)


__all__ = ["AnalysisOptions", "load_options"]
