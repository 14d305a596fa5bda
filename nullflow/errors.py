"""
nullflow/errors.py
══════════════════

Exception hierarchy for the nullability engine.

Analysis *findings* are never exceptions: they are
:class:`nullflow.checkers.Diagnostic` values.  The classes below cover the
other two failure families:

  NullflowError (base)
  ├── ContractError       - malformed contract declaration (registration time)
  ├── MalformedCFGError   - structurally invalid CFG input (one procedure)
  ├── FrontendError       - unreadable / malformed input document
  └── OptionsError        - bad configuration file or option value

``ContractError`` and ``MalformedCFGError`` are caught per procedure and
turned into ``InvalidContract`` / ``AnalysisFailure`` diagnostics by
:mod:`nullflow.runner`.  ``FrontendError`` and ``OptionsError`` surface to the
command line.
"""

from __future__ import annotations

from typing import Any, Optional


class NullflowError(Exception):
    """Base class for all nullflow errors."""


class ContractError(NullflowError):
    """A declared contract cannot be registered.

    Attributes
    ----------
    procedure_id : str
        Procedure whose signature carries the contract.
    contract : object or None
        The rejected contract.
    reason : str
        Human-readable explanation.
    """

    def __init__(
        self,
        procedure_id: str,
        reason: str,
        contract: Optional[Any] = None,
    ) -> None:
        super().__init__(f"{procedure_id}: {reason}")
        self.procedure_id = procedure_id
        self.reason = reason
        self.contract = contract


class MalformedCFGError(NullflowError):
    """The control-flow graph of a procedure is structurally invalid."""

    def __init__(self, procedure_id: str, reason: str) -> None:
        super().__init__(f"{procedure_id}: malformed CFG: {reason}")
        self.procedure_id = procedure_id
        self.reason = reason


class FrontendError(NullflowError):
    """The input document could not be decoded into procedures."""

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(f"{path}: {message}" if path else message)
        self.path = path


class OptionsError(NullflowError):
    """An option file or option value is invalid."""


__all__ = [
    "NullflowError",
    "ContractError",
    "MalformedCFGError",
    "FrontendError",
    "OptionsError",
]
