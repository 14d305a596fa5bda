"""
nullflow/runner.py
══════════════════

Runs the analysis over a compilation unit.

Every procedure is an independent unit of work: it gets its own
:class:`~nullflow.transfer.StateTransformer`, state maps and
:class:`~nullflow.checkers.DiagnosticCollector`.  With ``workers > 1`` the
procedures are spread over a :class:`concurrent.futures.ThreadPoolExecutor`.
The per-procedure buffers are merged into one :class:`AnalysisReport`
ordered by source location, so the report does not depend on which worker
finished first.

A procedure whose analysis raises is reported as ``AnalysisFailure``; its
siblings are unaffected.

Usage
─────
    >>> runner = UnitRunner(AnalysisOptions(workers=4))
    >>> report = runner.run_unit(load_unit("Student.json"))
    >>> print(report.summary())
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from nullflow.analysis import ProcedureAnalyzer, ProcedureResult
from nullflow.checkers import (
    Diagnostic,
    DiagnosticCollector,
    DiagnosticKind,
    Severity,
    SuppressionManager,
)
from nullflow.config import AnalysisOptions
from nullflow.contracts import ContractRegistry
from nullflow.dataflow_engine import WorklistStrategy
from nullflow.errors import OptionsError
from nullflow.ir import Procedure, ProcedureSignature

logger = logging.getLogger(__name__)


@dataclass
class AnalysisReport:
    """
    Merged, ordered result of a unit run.

    Attributes
    ----------
    diagnostics : All non-suppressed diagnostics, sorted by location
    results     : Per-procedure results keyed by procedure id
    skipped     : Procedures not analysed because the run was cancelled
    stats       : Timing and counting statistics
    """
    diagnostics: List[Diagnostic] = field(default_factory=list)
    results: Dict[str, ProcedureResult] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def merge(
        cls,
        results: Iterable[ProcedureResult],
        suppressions: Optional[SuppressionManager] = None,
    ) -> AnalysisReport:
        """Combine per-procedure buffers into one deterministic report."""
        report = cls()
        collected: List[Diagnostic] = []
        for res in results:
            report.results[res.procedure_id] = res
            collected.extend(res.diagnostics)
        if suppressions is not None:
            collected = suppressions.filter_diagnostics(collected)
        report.diagnostics = sorted(collected, key=lambda d: d.sort_key)
        return report

    @property
    def error_count(self) -> int:
        return self.count_severity(Severity.ERROR)

    @property
    def warning_count(self) -> int:
        return self.count_severity(Severity.WARNING)

    @property
    def total_count(self) -> int:
        return len(self.diagnostics)

    @property
    def has_errors(self) -> bool:
        return self.error_count > 0

    def count_severity(self, severity: Severity) -> int:
        return sum(1 for d in self.diagnostics if d.effective_severity is severity)

    def by_kind(self, kind: DiagnosticKind) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.kind is kind]

    def by_procedure(self, procedure_id: str) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.procedure_id == procedure_id]

    def to_json_lines(self) -> str:
        return "\n".join(d.to_json_str() for d in self.diagnostics)

    def to_gcc_format(self) -> str:
        return "\n".join(d.to_gcc_format() for d in self.diagnostics)

    def summary(self) -> str:
        """Human-readable summary."""
        kinds = Counter(d.kind.label for d in self.diagnostics)
        lines = [
            f"Analysis complete: {len(self.results)} procedures, "
            f"{self.total_count} diagnostics "
            f"({self.error_count} errors, {self.warning_count} warnings)",
        ]
        for label in sorted(kinds):
            lines.append(f"  {label}: {kinds[label]}")
        if self.skipped:
            lines.append(f"  skipped (cancelled): {len(self.skipped)}")
        return "\n".join(lines)


class UnitRunner:
    """
    Analyses the procedures of a unit, sequentially or on worker threads.

    Parameters
    ----------
    options      : AnalysisOptions (``workers`` and ``suppress`` are used here)
    registry     : ContractRegistry shared read-only by all workers
    suppressions : SuppressionManager; ``options.suppress`` is added to it
    strategy     : worklist order passed to every ProcedureAnalyzer
    """

    def __init__(
        self,
        options: Optional[AnalysisOptions] = None,
        registry: Optional[ContractRegistry] = None,
        suppressions: Optional[SuppressionManager] = None,
        strategy: WorklistStrategy = WorklistStrategy.RPO,
    ) -> None:
        self.options = options or AnalysisOptions()
        self.registry = registry if registry is not None else ContractRegistry()
        self.suppressions = suppressions or SuppressionManager()
        self.strategy = strategy
        self._cancelled = threading.Event()
        for name in self.options.suppress:
            try:
                self.suppressions.add_global_suppression(DiagnosticKind.parse(name))
            except ValueError as exc:
                raise OptionsError(str(exc)) from exc

    def cancel(self) -> None:
        """Do not start any further procedure; running ones finish."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def register(self, signatures: Iterable[ProcedureSignature]) -> None:
        for sig in signatures:
            self.registry.register(sig)

    def run_unit(self, unit: Any) -> AnalysisReport:
        """Run a :class:`nullflow.frontend.Unit`."""
        return self.run(unit.procedures, unit.externs)

    def run(
        self,
        procedures: Sequence[Procedure],
        externs: Iterable[ProcedureSignature] = (),
    ) -> AnalysisReport:
        """Analyse *procedures*; *externs* only contribute contracts."""
        t0 = time.monotonic()
        self.register(externs)
        self.register(p.signature for p in procedures)

        workers = min(self.options.workers, max(len(procedures), 1))
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="nullflow") as pool:
                outcomes = list(pool.map(self._analyze_one, procedures))
        else:
            outcomes = [self._analyze_one(p) for p in procedures]

        finished = [r for r in outcomes if r is not None]
        report = AnalysisReport.merge(finished, self.suppressions)
        report.skipped = [p.id for p, r in zip(procedures, outcomes) if r is None]
        report.stats["elapsed_ms"] = (time.monotonic() - t0) * 1000.0
        report.stats["workers"] = workers
        report.stats["iterations"] = sum(r.iterations for r in finished)
        logger.info(
            "analysed %d procedures (%d skipped) in %.1f ms",
            len(finished), len(report.skipped), report.stats["elapsed_ms"],
        )
        return report

    def _analyze_one(self, procedure: Procedure) -> Optional[ProcedureResult]:
        if self._cancelled.is_set():
            return None
        analyzer = ProcedureAnalyzer(self.registry, self.options, self.strategy)
        try:
            return analyzer.analyze(procedure)
        except Exception as exc:
            # Isolation: one broken procedure never takes its siblings down
            logger.warning("analysis of %s failed: %s", procedure.id, exc)
            logger.debug("traceback for %s", procedure.id, exc_info=True)
            collector = DiagnosticCollector(procedure.id, procedure.file)
            collector.emit(
                DiagnosticKind.ANALYSIS_FAILURE, "",
                f"analysis failed: {type(exc).__name__}: {exc}",
                line=procedure.line,
            )
            return ProcedureResult(
                procedure_id=procedure.id,
                diagnostics=collector.diagnostics,
                converged=False,
            )


__all__ = ["AnalysisReport", "UnitRunner"]
