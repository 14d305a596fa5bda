"""
nullflow/checkers.py
════════════════════

Diagnostic model for the nullability engine.

This is the "last mile" module: it turns analysis findings into ordered,
de-duplicated, serializable diagnostics.

  ┌───────────────────────────────────────────────────────┐
  │  StateTransformer / ContractValidator / UnitRunner    │
  │                         │                             │
  │  ┌──────────────────────▼──────────────────────────┐  │
  │  │  DiagnosticCollector (one per procedure)        │  │
  │  │  dedupe by (location, binding)                  │  │
  │  └──────────────────────┬──────────────────────────┘  │
  │  ┌──────────────────────▼──────────────────────────┐  │
  │  │  SuppressionManager  │ global │ per-procedure   │  │
  │  └──────────────────────┬──────────────────────────┘  │
  │  ┌──────────────────────▼──────────────────────────┐  │
  │  │  AnalysisReport (runner) → plus_reporter        │  │
  │  └─────────────────────────────────────────────────┘  │
  └───────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import json
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from fnmatch import fnmatch
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — DIAGNOSTIC MODEL
# ═════════════════════════════════════════════════════════════════════════

class Severity(Enum):
    """Diagnostic severity levels."""
    ERROR = "error"
    WARNING = "warning"
    STYLE = "style"
    INFORMATION = "information"


class DiagnosticKind(Enum):
    """
    What was found.

    Each member carries its default severity and CWE number (0 = none).
    """

    POSSIBLE_NULL_DEREFERENCE = ("PossibleNullDereference", Severity.WARNING, 476)
    CONTRACT_INCONSISTENCY = ("ContractInconsistency", Severity.ERROR, 0)
    REDUNDANT_NULL_CHECK = ("RedundantNullCheck", Severity.STYLE, 0)
    POSSIBLE_NULL_ASSIGNMENT = ("PossibleNullAssignment", Severity.WARNING, 0)
    POSSIBLE_NULL_ARGUMENT = ("PossibleNullArgument", Severity.WARNING, 476)
    POSSIBLE_NULL_RETURN = ("PossibleNullReturn", Severity.WARNING, 0)
    UNINITIALIZED_NON_NULLABLE_MEMBER = ("UninitializedNonNullableMember", Severity.WARNING, 0)
    INVALID_CONTRACT = ("InvalidContract", Severity.ERROR, 0)
    ANALYSIS_TIMEOUT = ("AnalysisTimeout", Severity.INFORMATION, 0)
    ANALYSIS_FAILURE = ("AnalysisFailure", Severity.ERROR, 0)

    def __init__(self, label: str, severity: Severity, cwe: int) -> None:
        self.label = label
        self.severity = severity
        self.cwe = cwe

    @classmethod
    def parse(cls, text: str) -> DiagnosticKind:
        """Accept either the label (``PossibleNullDereference``) or member name."""
        key = text.strip()
        for member in cls:
            if key == member.label or key.upper() == member.name:
                return member
        raise ValueError(f"unknown diagnostic kind: {text!r}")


@dataclass(frozen=True)
class SourceLocation:
    """A specific point in source code."""
    file: str = ""
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        if self.column:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"


@dataclass(frozen=True)
class Diagnostic:
    """
    A single diagnostic finding.

    Attributes
    ----------
    procedure_id    : Procedure the finding belongs to
    block_id        : Basic block id (``None`` for procedure-level findings)
    statement_index : Index of the statement in the block (``-1`` if none)
    kind            : DiagnosticKind
    binding         : Access path the finding is about (may be empty)
    message         : Human-readable description
    severity        : Severity (defaults to the kind's severity)
    location        : Source position, when the front end provided one
    """
    procedure_id: str
    block_id: Optional[int]
    statement_index: int
    kind: DiagnosticKind
    binding: str
    message: str
    severity: Optional[Severity] = None
    location: SourceLocation = SourceLocation()

    @property
    def effective_severity(self) -> Severity:
        return self.severity or self.kind.severity

    @property
    def dedupe_key(self) -> Tuple[str, int, int, str]:
        return (
            self.procedure_id,
            -1 if self.block_id is None else self.block_id,
            self.statement_index,
            self.binding,
        )

    @property
    def sort_key(self) -> Tuple[Any, ...]:
        loc = self.location
        return (
            loc.file,
            loc.line,
            loc.column,
            self.procedure_id,
            -1 if self.block_id is None else self.block_id,
            self.statement_index,
            self.kind.label,
            self.binding,
            self.message,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the external field names."""
        result: Dict[str, Any] = {
            "procedureId": self.procedure_id,
            "blockId": self.block_id,
            "statementIndex": self.statement_index,
            "kind": self.kind.label,
            "bindingName": self.binding,
            "message": self.message,
            "severity": self.effective_severity.value,
        }
        if self.location.file or self.location.line:
            result["file"] = self.location.file
            result["line"] = self.location.line
            result["column"] = self.location.column
        if self.kind.cwe:
            result["cwe"] = self.kind.cwe
        return result

    def to_json_str(self) -> str:
        """Single-line JSON string; keys sorted for byte-stable output."""
        return json.dumps(self.to_dict(), sort_keys=True)

    def to_gcc_format(self) -> str:
        """GCC-style diagnostic string: file:line:col: severity: message [kind]."""
        where = str(self.location) if self.location.file else self.procedure_id
        if self.block_id is not None:
            where += f" (BB{self.block_id}#{self.statement_index})"
        sev = self.effective_severity.value
        return f"{where}: {sev}: {self.message} [{self.kind.label}]"


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — SUPPRESSION MANAGER
# ═════════════════════════════════════════════════════════════════════════

class SuppressionManager:
    """
    Manages diagnostic suppressions.

    Sources:
      1. Global suppressions (options file or command line)
      2. Per-procedure suppressions (``fnmatch`` patterns on procedure ids)

    Usage
    -----
    >>> sm = SuppressionManager()
    >>> sm.add_global_suppression(DiagnosticKind.REDUNDANT_NULL_CHECK)
    >>> sm.add_procedure_suppression(DiagnosticKind.POSSIBLE_NULL_RETURN, "Legacy.*")
    >>> kept = sm.filter_diagnostics(diagnostics)
    """

    def __init__(self) -> None:
        self._global: Set[DiagnosticKind] = set()
        self._by_procedure: Dict[str, Set[DiagnosticKind]] = defaultdict(set)

    def add_global_suppression(self, kind: DiagnosticKind) -> None:
        self._global.add(kind)

    def add_procedure_suppression(self, kind: DiagnosticKind, pattern: str) -> None:
        """Suppress *kind* in procedures whose id matches *pattern*."""
        self._by_procedure[pattern].add(kind)

    def is_suppressed(self, diag: Diagnostic) -> bool:
        if diag.kind in self._global:
            return True
        for pattern, kinds in self._by_procedure.items():
            if diag.kind in kinds and fnmatch(diag.procedure_id, pattern):
                return True
        return False

    def filter_diagnostics(
        self, diagnostics: Iterable[Diagnostic]
    ) -> List[Diagnostic]:
        """Return only non-suppressed diagnostics."""
        return [d for d in diagnostics if not self.is_suppressed(d)]


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — COLLECTOR
# ═════════════════════════════════════════════════════════════════════════

class DiagnosticCollector:
    """
    Per-procedure diagnostic buffer.

    The first diagnostic recorded for a given ``(location, binding)`` wins;
    later ones at the same key are dropped.
    """

    def __init__(self, procedure_id: str, file: str = "") -> None:
        self.procedure_id = procedure_id
        self.file = file
        self._diagnostics: List[Diagnostic] = []
        self._seen: Set[Tuple[str, int, int, str]] = set()

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return list(self._diagnostics)

    def __len__(self) -> int:
        return len(self._diagnostics)

    def add(self, diag: Diagnostic) -> bool:
        """Record *diag*; return ``False`` if its key was already taken."""
        key = diag.dedupe_key
        if key in self._seen:
            return False
        self._seen.add(key)
        self._diagnostics.append(diag)
        return True

    def emit(
        self,
        kind: DiagnosticKind,
        binding: str,
        message: str,
        block_id: Optional[int] = None,
        statement_index: int = -1,
        line: int = 0,
        column: int = 0,
        severity: Optional[Severity] = None,
    ) -> bool:
        """Helper to create and store a diagnostic."""
        return self.add(Diagnostic(
            procedure_id=self.procedure_id,
            block_id=block_id,
            statement_index=statement_index,
            kind=kind,
            binding=binding,
            message=message,
            severity=severity,
            location=SourceLocation(self.file, line, column),
        ))

    def count(self, kind: DiagnosticKind) -> int:
        return sum(1 for d in self._diagnostics if d.kind is kind)


__all__ = [
    "Severity",
    "DiagnosticKind",
    "SourceLocation",
    "Diagnostic",
    "SuppressionManager",
    "DiagnosticCollector",
]
