"""
nullflow — Nullability Contract Verification Engine
===================================================

A forward dataflow analysis that tracks, for every reference binding of a
procedure, whether it is provably ``NonNull``, provably ``Null`` or
``MaybeNull`` at each program point, and reports dereferences of bindings
that are not provably non-null.  Declared contracts of callees are trusted;
contracts of the analysed procedures are proved against their bodies.

Core modules
------------
lattice
    The three-valued null-state domain and the immutable ``StateMap``.
dataflow_engine
    Generic lattice base and the forward worklist solver.
ir / ctrlflow_graph
    Normalized statements and expressions; per-procedure CFGs.
contracts
    Contract variants, registration-time checks, exit validation.
transfer / analysis
    Per-statement transfer functions and the single-procedure walker.
runner
    Parallel, failure-isolated analysis of a whole unit.
frontend / config / plus_reporter / cli
    JSON input, options, report rendering and the command line.

Quick start
-----------
>>> from nullflow import load_unit, UnitRunner
>>> report = UnitRunner().run_unit(load_unit("Student.json"))
>>> print(report.summary())
"""

from __future__ import annotations

import logging
from typing import List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

from nullflow.analysis import ProcedureAnalyzer, ProcedureResult  # noqa: E402
from nullflow.checkers import (  # noqa: E402
    Diagnostic,
    DiagnosticCollector,
    DiagnosticKind,
    Severity,
    SourceLocation,
    SuppressionManager,
)
from nullflow.config import AnalysisOptions, load_options  # noqa: E402
from nullflow.contracts import (  # noqa: E402
    ContractRegistry,
    ContractValidator,
    MemberPostcondition,
    PostconditionConditional,
    PostconditionUnconditional,
    Precondition,
    ReturnPostcondition,
    Unreachability,
)
from nullflow.ctrlflow_graph import CFG, EdgeKind  # noqa: E402
from nullflow.errors import (  # noqa: E402
    ContractError,
    FrontendError,
    MalformedCFGError,
    NullflowError,
    OptionsError,
)
from nullflow.frontend import ProcedureBuilder, Unit, load_unit, loads_unit  # noqa: E402
from nullflow.lattice import GuardOutcome, NullState, StateMap, join, narrow  # noqa: E402
from nullflow.runner import AnalysisReport, UnitRunner  # noqa: E402

__all__: List[str] = [
    "__version__",
    "ProcedureAnalyzer",
    "ProcedureResult",
    "Diagnostic",
    "DiagnosticCollector",
    "DiagnosticKind",
    "Severity",
    "SourceLocation",
    "SuppressionManager",
    "AnalysisOptions",
    "load_options",
    "ContractRegistry",
    "ContractValidator",
    "MemberPostcondition",
    "PostconditionConditional",
    "PostconditionUnconditional",
    "Precondition",
    "ReturnPostcondition",
    "Unreachability",
    "CFG",
    "EdgeKind",
    "ContractError",
    "FrontendError",
    "MalformedCFGError",
    "NullflowError",
    "OptionsError",
    "ProcedureBuilder",
    "Unit",
    "load_unit",
    "loads_unit",
    "GuardOutcome",
    "NullState",
    "StateMap",
    "join",
    "narrow",
    "AnalysisReport",
    "UnitRunner",
]
