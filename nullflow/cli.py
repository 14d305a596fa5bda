"""nullflow/cli.py — command line entry point.

Usage examples
--------------
    # Analyse a unit and print GCC-style diagnostics
    nullflow analyze Student.json

    # Coloured output, four workers, option file
    nullflow analyze Student.json -f terminal --workers 4 --config nullflow.json

    # SARIF for code-scanning upload
    nullflow analyze Student.json -f sarif -o nullflow.sarif

    # Print the CFG of one procedure as Graphviz DOT
    nullflow cfg Student.json --procedure Student.SetEmptyIfNull

Exit codes
----------
    0   No diagnostics with severity ERROR.
    1   One or more diagnostics with severity ERROR were emitted.
    2   Infrastructure failure (unreadable input, bad options, ...).

``python -m nullflow`` runs :func:`main` through ``nullflow/__main__.py``.
"""

from __future__ import annotations

import argparse
import logging
import sys
import textwrap
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, TextIO

from nullflow import __version__
from nullflow.checkers import DiagnosticKind
from nullflow.config import AnalysisOptions, load_options
from nullflow.dataflow_engine import WorklistStrategy
from nullflow.errors import FrontendError, OptionsError
from nullflow.frontend import load_unit
from nullflow.plus_reporter import FORMATS, Reporter
from nullflow.runner import UnitRunner

_log = logging.getLogger("nullflow")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``nullflow`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root = logging.getLogger("nullflow")
    root.setLevel(level)
    for old in [h for h in root.handlers if not isinstance(h, logging.NullHandler)]:
        root.removeHandler(old)
    root.addHandler(handler)


def _open_output(dest: Optional[str]) -> TextIO:
    """Return a writable text stream.

    *dest* ``None`` or ``"-"`` → ``sys.stdout``; otherwise open the path
    for writing (creating parent directories as needed).
    """
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def _build_options(args: argparse.Namespace) -> AnalysisOptions:
    """Option file first, then command-line overrides."""
    options = load_options(args.config) if args.config else AnalysisOptions()
    overrides: Dict[str, Any] = {
        "workers": args.workers,
        "max_fixed_point_iterations_per_procedure": args.max_iterations,
        "treat_unconstrained_generics_as_nullable": args.unconstrained_nullable,
        "suppress_forgiving_operator_diagnostics": args.suppress_forgiving,
    }
    if args.suppress:
        overrides["suppress"] = tuple(options.suppress) + tuple(args.suppress)
    return options.replace(**overrides)


# ===========================================================================
# Sub-command implementations
# ===========================================================================

def cmd_analyze(args: argparse.Namespace) -> int:
    """Analyse every procedure of the input unit and render the report."""
    try:
        options = _build_options(args)
        unit = load_unit(args.input)
        runner = UnitRunner(options, strategy=WorklistStrategy(args.strategy))
    except (FrontendError, OptionsError) as exc:
        _log.error("%s", exc)
        return EXIT_INFRA

    _log.info("analysing %d procedures from %s", len(unit.procedures), args.input)
    report = runner.run_unit(unit)

    out = _open_output(args.output)
    try:
        summary = None if args.quiet else sys.stderr
        Reporter(out, fmt=args.format, summary_stream=summary).render(report)
    finally:
        if out is not sys.stdout:
            out.close()

    return EXIT_ERROR if report.has_errors else EXIT_OK


def cmd_cfg(args: argparse.Namespace) -> int:
    """Print the CFG of the selected procedures as Graphviz DOT."""
    try:
        unit = load_unit(args.input)
    except FrontendError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA
    procedures = unit.procedures
    if args.procedure:
        procedures = [p for p in procedures if p.id in args.procedure]
        if not procedures:
            _log.error("no procedure named %s", ", ".join(args.procedure))
            return EXIT_INFRA
    out = _open_output(args.output)
    try:
        for proc in procedures:
            out.write(proc.cfg.to_dot(title=proc.id) + "\n")
    finally:
        if out is not sys.stdout:
            out.close()
    return EXIT_OK


def cmd_kinds(args: argparse.Namespace) -> int:
    """List diagnostic kinds with their default severity."""
    for kind in DiagnosticKind:
        cwe = f"  CWE-{kind.cwe}" if kind.cwe else ""
        print(f"{kind.label:<32} {kind.severity.value:<12}{cwe}")
    return EXIT_OK


# ===========================================================================
# Argument parser
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    """Construct the full CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="nullflow",
        description="Nullability contract verification over pre-built CFGs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              nullflow analyze Student.json
              nullflow analyze Student.json -f sarif -o report.sarif
              nullflow cfg Student.json --procedure Student.SetEmptyIfNull
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    def _add_output_args(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "-o", "--output",
            default=None,
            metavar="FILE",
            help='Output file ("-" or omit for stdout).',
        )

    # --- analyze ----------------------------------------------------------
    p_analyze = subparsers.add_parser(
        "analyze",
        help="Analyse a JSON unit and report diagnostics.",
    )
    p_analyze.add_argument("input", metavar="UNIT", help="JSON input document.")
    _add_output_args(p_analyze)
    p_analyze.add_argument(
        "-f", "--format",
        choices=list(FORMATS),
        default="text",
        help="Output format (default: text).",
    )
    p_analyze.add_argument(
        "-c", "--config",
        default=None,
        metavar="FILE",
        help="JSON option file.",
    )
    p_analyze.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Do not print the summary line.",
    )
    g = p_analyze.add_argument_group("analysis options")
    g.add_argument(
        "-j", "--workers",
        type=int,
        default=None,
        metavar="N",
        help="Analyse N procedures in parallel.",
    )
    g.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        metavar="N",
        help="Fixed-point iteration cap per procedure.",
    )
    g.add_argument(
        "--strategy",
        choices=[s.value for s in WorklistStrategy],
        default=WorklistStrategy.RPO.value,
        help="Worklist order (default: rpo).",
    )
    g.add_argument(
        "--unconstrained-nullable",
        dest="unconstrained_nullable",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Treat unconstrained generic bindings as nullable.",
    )
    g.add_argument(
        "--suppress-forgiving",
        dest="suppress_forgiving",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Silence diagnostics on operands of the null-forgiving operator.",
    )
    g.add_argument(
        "--suppress",
        action="append",
        default=[],
        metavar="KIND",
        help="Suppress a diagnostic kind (repeatable).",
    )
    p_analyze.set_defaults(func=cmd_analyze)

    # --- cfg --------------------------------------------------------------
    p_cfg = subparsers.add_parser(
        "cfg",
        help="Print procedure CFGs as Graphviz DOT.",
    )
    p_cfg.add_argument("input", metavar="UNIT", help="JSON input document.")
    p_cfg.add_argument(
        "-p", "--procedure",
        action="append",
        default=[],
        metavar="ID",
        help="Only this procedure (repeatable).",
    )
    _add_output_args(p_cfg)
    p_cfg.set_defaults(func=cmd_cfg)

    # --- kinds ------------------------------------------------------------
    p_kinds = subparsers.add_parser(
        "kinds",
        help="List diagnostic kinds.",
    )
    p_kinds.set_defaults(func=cmd_kinds)

    return parser


# ===========================================================================
# Main
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the nullflow CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help(sys.stderr)
        return EXIT_INFRA

    try:
        return args.func(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130
    except OSError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())
