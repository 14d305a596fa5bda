"""
nullflow/plus_reporter.py
═════════════════════════

Renderers for an :class:`nullflow.runner.AnalysisReport`.

Output formats
──────────────
  • text     : one ``file:line:col: severity: message [Kind]`` line each
  • terminal : colourful Rust-style rendering (termcolor)
  • json     : one JSON object per line
  • sarif    : SARIF 2.1.0 document
  • html     : standalone page rendered with Jinja2

Usage
─────
    from nullflow.plus_reporter import Reporter

    rep = Reporter(sys.stdout, fmt="terminal")
    stats = rep.render(report)
    rep.finish()
"""

from __future__ import annotations

import io
import json
import sys
import textwrap
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, TextIO

import jinja2
from termcolor import colored

from nullflow import __version__
from nullflow.checkers import Diagnostic, Severity

FORMATS = ("text", "terminal", "json", "sarif", "html")

# severity → (termcolor colour, SARIF level)
_STYLE: Dict[Severity, tuple] = {
    Severity.ERROR: ("red", "error"),
    Severity.WARNING: ("yellow", "warning"),
    Severity.STYLE: ("cyan", "note"),
    Severity.INFORMATION: ("white", "note"),
}


@dataclass
class ReporterStats:
    """Aggregate counts per severity."""
    error: int = 0
    warning: int = 0
    style: int = 0
    information: int = 0

    def record(self, severity: Severity) -> None:
        """Increment the counter that corresponds to *severity*."""
        attr = severity.value
        setattr(self, attr, getattr(self, attr) + 1)

    @property
    def total(self) -> int:
        return self.error + self.warning + self.style + self.information

    def summary_line(self) -> str:
        parts: List[str] = []
        if self.error:
            parts.append(f"{self.error} error{'s' if self.error != 1 else ''}")
        if self.warning:
            parts.append(f"{self.warning} warning{'s' if self.warning != 1 else ''}")
        if self.style:
            parts.append(f"{self.style} style")
        if self.information:
            parts.append(f"{self.information} info")
        if not parts:
            return "no diagnostics"
        return ", ".join(parts) + " emitted"


def _where(diag: Diagnostic) -> str:
    if diag.block_id is None:
        return f"in {diag.procedure_id}"
    return f"in {diag.procedure_id}, block {diag.block_id}, statement {diag.statement_index}"


# ═════════════════════════════════════════════════════════════════════════
#  TERMINAL RENDERER  (Rust-style colourful output)
# ═════════════════════════════════════════════════════════════════════════

class _TerminalRenderer:
    """Render diagnostics to a terminal with colours."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    def render(self, diag: Diagnostic) -> None:
        sev = diag.effective_severity
        color = _STYLE[sev][0]
        lines: List[str] = []

        # ── header: severity[Kind]: message ──────────────────────────
        head = colored(f"{sev.value}[{diag.kind.label}]", color, attrs=["bold"])
        lines.append(f"{head}: {colored(diag.message, 'white', attrs=['bold'])}")

        # ── location ─────────────────────────────────────────────────
        arrow = colored("-->", "blue", attrs=["bold"])
        if diag.location.file:
            lines.append(f"  {arrow} {diag.location}")
        prefix = colored("note", "cyan", attrs=["bold"])
        lines.append(f"  = {prefix}: {_where(diag)}")
        if diag.binding:
            lines.append(f"  = {prefix}: binding '{diag.binding}'")

        # ── CWE tag ──────────────────────────────────────────────────
        if diag.kind.cwe:
            cwe = colored(f"CWE-{diag.kind.cwe}", "blue", attrs=["underline"])
            lines.append(
                f"  = {cwe}: https://cwe.mitre.org/data/definitions/{diag.kind.cwe}.html"
            )

        lines.append(colored(diag.to_gcc_format(), attrs=["dark"]))
        lines.append("")
        self._stream.write("\n".join(lines) + "\n")


# ═════════════════════════════════════════════════════════════════════════
#  PLAIN RENDERERS
# ═════════════════════════════════════════════════════════════════════════

class _PlainRenderer:
    """Non-coloured renderer — one GCC-style line per diagnostic."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    def render(self, diag: Diagnostic) -> None:
        self._stream.write(diag.to_gcc_format() + "\n")


class _JsonLinesRenderer:
    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    def render(self, diag: Diagnostic) -> None:
        self._stream.write(diag.to_json_str() + "\n")


# ═════════════════════════════════════════════════════════════════════════
#  SARIF 2.1.0 BUILDER
# ═════════════════════════════════════════════════════════════════════════

class _SarifBuilder:
    """Accumulates diagnostics and produces a SARIF 2.1.0 JSON document."""

    SARIF_VERSION = "2.1.0"
    SARIF_SCHEMA = (
        "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/master/"
        "Schemata/sarif-schema-2.1.0.json"
    )

    def __init__(self) -> None:
        self._results: List[Dict[str, Any]] = []
        self._rules: Dict[str, Dict[str, Any]] = {}

    def add(self, diag: Diagnostic) -> None:
        kind = diag.kind
        # ── rule ─────────────────────────────────────────────────────
        if kind.label not in self._rules:
            rule: Dict[str, Any] = {
                "id": kind.label,
                "shortDescription": {"text": kind.label},
                "defaultConfiguration": {"level": _STYLE[kind.severity][1]},
            }
            if kind.cwe:
                rule["relationships"] = [
                    {
                        "target": {
                            "id": str(kind.cwe),
                            "toolComponent": {"name": "CWE"},
                        },
                        "kinds": ["superset"],
                    }
                ]
            self._rules[kind.label] = rule

        # ── result ───────────────────────────────────────────────────
        result: Dict[str, Any] = {
            "ruleId": kind.label,
            "level": _STYLE[diag.effective_severity][1],
            "message": {"text": diag.message},
            "properties": {
                "procedureId": diag.procedure_id,
                "blockId": diag.block_id,
                "statementIndex": diag.statement_index,
                "bindingName": diag.binding,
            },
        }
        loc = diag.location
        if loc.file:
            phys: Dict[str, Any] = {"artifactLocation": {"uri": loc.file}}
            if loc.line:
                phys["region"] = {"startLine": loc.line}
                if loc.column:
                    phys["region"]["startColumn"] = loc.column
            result["locations"] = [{
                "physicalLocation": phys,
                "logicalLocations": [{"fullyQualifiedName": diag.procedure_id}],
            }]
        if kind.cwe:
            result["properties"]["cwe"] = kind.cwe
        self._results.append(result)

    def to_json(self, tool_name: str, version: str) -> str:
        sarif: Dict[str, Any] = {
            "$schema": self.SARIF_SCHEMA,
            "version": self.SARIF_VERSION,
            "runs": [
                {
                    "tool": {
                        "driver": {
                            "name": tool_name,
                            "version": version,
                            "rules": list(self._rules.values()),
                        }
                    },
                    "results": self._results,
                }
            ],
        }
        return json.dumps(sarif, indent=2)


# ═════════════════════════════════════════════════════════════════════════
#  HTML BUILDER
# ═════════════════════════════════════════════════════════════════════════

class _HtmlBuilder:
    """Accumulates diagnostics and renders them to HTML via Jinja2."""

    def __init__(self) -> None:
        self._diagnostics: List[Dict[str, Any]] = []

    def add(self, diag: Diagnostic) -> None:
        entry = diag.to_dict()
        entry["where"] = _where(diag)
        self._diagnostics.append(entry)

    def render(self, summary: str, template: Optional[str] = None) -> str:
        env = jinja2.Environment(autoescape=True)
        tmpl = env.from_string(template or _DEFAULT_HTML_TEMPLATE)
        return tmpl.render(
            diagnostics=self._diagnostics,
            total=len(self._diagnostics),
            summary=summary,
        )


# ═════════════════════════════════════════════════════════════════════════
#  REPORTER  (main entry point)
# ═════════════════════════════════════════════════════════════════════════

class Reporter:
    """
    Writes a report in one of :data:`FORMATS`.

    ``text``, ``terminal`` and ``json`` stream one record per diagnostic;
    ``sarif`` and ``html`` are written as a whole document by :meth:`finish`.
    The summary line goes to *summary_stream* for the two human-readable
    formats.
    """

    def __init__(
        self,
        stream: TextIO = sys.stdout,
        fmt: str = "text",
        summary_stream: Optional[TextIO] = sys.stderr,
        tool_name: str = "nullflow",
        tool_version: str = __version__,
        html_template: Optional[str] = None,
    ) -> None:
        if fmt not in FORMATS:
            raise ValueError(f"unknown report format {fmt!r}; expected one of {FORMATS}")
        self.fmt = fmt
        self.stream = stream
        self.summary_stream = summary_stream
        self.tool_name = tool_name
        self.tool_version = tool_version
        self.html_template = html_template
        self.stats = ReporterStats()
        self._renderer: Any = None
        self._sarif: Optional[_SarifBuilder] = None
        self._html: Optional[_HtmlBuilder] = None
        if fmt == "terminal":
            self._renderer = _TerminalRenderer(stream)
        elif fmt == "text":
            self._renderer = _PlainRenderer(stream)
        elif fmt == "json":
            self._renderer = _JsonLinesRenderer(stream)
        elif fmt == "sarif":
            self._sarif = _SarifBuilder()
        else:
            self._html = _HtmlBuilder()

    def emit(self, diag: Diagnostic) -> None:
        self.stats.record(diag.effective_severity)
        if self._renderer is not None:
            self._renderer.render(diag)
        if self._sarif is not None:
            self._sarif.add(diag)
        if self._html is not None:
            self._html.add(diag)

    def render(self, report: Any) -> ReporterStats:
        """Emit every diagnostic of *report* and finish."""
        for diag in report.diagnostics:
            self.emit(diag)
        return self.finish()

    def finish(self) -> ReporterStats:
        """Write whole-document formats and the summary line."""
        summary = self.stats.summary_line()
        if self._sarif is not None:
            self.stream.write(self._sarif.to_json(self.tool_name, self.tool_version) + "\n")
        if self._html is not None:
            self.stream.write(self._html.render(summary, self.html_template))
        self.stream.flush()

        if self.summary_stream is None or self.fmt not in ("text", "terminal"):
            return self.stats
        if self.fmt == "terminal":
            color = "red" if self.stats.error else "yellow" if self.stats.total else "green"
            self.summary_stream.write(
                colored(f"  ╰─ {summary}", color, attrs=["bold"]) + "\n"
            )
        else:
            self.summary_stream.write(f"  {summary}\n")
        return self.stats


def render_report(report: Any, fmt: str = "text") -> str:
    """Render *report* to a string without a summary line."""
    buf = io.StringIO()
    Reporter(buf, fmt=fmt, summary_stream=None).render(report)
    return buf.getvalue()


# ═════════════════════════════════════════════════════════════════════════
#  DEFAULT HTML TEMPLATE
# ═════════════════════════════════════════════════════════════════════════

_DEFAULT_HTML_TEMPLATE = textwrap.dedent("""\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>nullflow report</title>
  <style>
    :root { --bg: #1e1e2e; --fg: #cdd6f4; --surface: #313244;
            --red: #f38ba8; --yellow: #f9e2af; --cyan: #89dceb;
            --blue: #89b4fa; --border: #45475a; }
    body { font-family: 'Fira Code', monospace; background: var(--bg);
           color: var(--fg); padding: 2rem; }
    .card { background: var(--surface); border: 1px solid var(--border);
            border-radius: 8px; padding: 1rem; margin-bottom: 1rem; }
    .sev-error       { border-left: 4px solid var(--red); }
    .sev-warning     { border-left: 4px solid var(--yellow); }
    .sev-style       { border-left: 4px solid var(--cyan); }
    .sev-information { border-left: 4px solid var(--fg); }
    .loc { color: var(--blue); font-size: 0.9em; }
    .where { color: var(--cyan); font-size: 0.9em; }
    .summary { margin-top: 2rem; text-align: center; }
  </style>
</head>
<body>
  <h1>nullflow report</h1>
  {% for d in diagnostics %}
  <div class="card sev-{{ d.severity }}">
    <strong>{{ d.severity }}</strong> <code>[{{ d.kind }}]</code>
    {% if d.file %}<span class="loc">{{ d.file }}:{{ d.line }}{% if d.column %}:{{ d.column }}{% endif %}</span>{% endif %}
    <div class="msg">{{ d.message }}</div>
    <div class="where">{{ d.where }}{% if d.bindingName %} &middot; {{ d.bindingName }}{% endif %}</div>
    {% if d.cwe %}<div class="cwe">CWE-{{ d.cwe }}</div>{% endif %}
  </div>
  {% endfor %}
  <div class="summary">{{ total }} diagnostic{{ 's' if total != 1 else '' }}: {{ summary }}</div>
</body>
</html>
""")


__all__ = [
    "FORMATS",
    "ReporterStats",
    "Reporter",
    "render_report",
]
