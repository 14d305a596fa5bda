# tests/test_reporter.py
"""
Tests for the report renderers (text, terminal, JSON lines, SARIF, HTML).
"""

import io
import json

import pytest

from nullflow import AnalysisReport, UnitRunner, loads_unit
from nullflow.checkers import Diagnostic, DiagnosticKind, Severity, SourceLocation
from nullflow.plus_reporter import FORMATS, Reporter, ReporterStats, render_report


@pytest.fixture
def report(student_unit_json):
    return UnitRunner().run_unit(loads_unit(student_unit_json))


def _single(message="m", kind=DiagnosticKind.CONTRACT_INCONSISTENCY):
    diag = Diagnostic("Demo.P", 1, 0, kind, "x", message,
                      location=SourceLocation("Demo.cs", 4, 2))
    return AnalysisReport(diagnostics=[diag])


class TestFormats:

    def test_text(self, report):
        out = render_report(report, "text")
        assert out == (
            "Student.cs:31:9 (BB0#0): warning: possible null dereference: "
            "'middle' may be MaybeNull here [PossibleNullDereference]\n"
        )

    def test_terminal(self, report):
        out = render_report(report, "terminal")
        assert "warning[PossibleNullDereference]" in out
        assert "Student.cs:31:9" in out
        assert "binding 'middle'" in out
        assert "CWE-476" in out

    def test_json_lines(self, report):
        lines = render_report(report, "json").splitlines()
        assert len(lines) == 1
        record = json.loads(lines[0])
        assert record["procedureId"] == "Student.PrintMiddle"
        assert record["bindingName"] == "middle"
        assert record["statementIndex"] == 0

    def test_sarif(self, report):
        doc = json.loads(render_report(report, "sarif"))
        assert doc["version"] == "2.1.0"
        run = doc["runs"][0]
        assert run["tool"]["driver"]["name"] == "nullflow"
        assert [r["id"] for r in run["tool"]["driver"]["rules"]] == ["PossibleNullDereference"]
        result = run["results"][0]
        assert result["level"] == "warning"
        region = result["locations"][0]["physicalLocation"]["region"]
        assert region == {"startLine": 31, "startColumn": 9}
        assert result["properties"]["cwe"] == 476

    def test_sarif_error_level(self):
        doc = json.loads(render_report(_single(), "sarif"))
        assert doc["runs"][0]["results"][0]["level"] == "error"

    def test_html_is_escaped(self):
        out = render_report(_single(message="<script>alert(1)</script>"), "html")
        assert "<script>alert" not in out
        assert "&lt;script&gt;" in out
        assert "ContractInconsistency" in out

    def test_custom_html_template(self):
        buf = io.StringIO()
        Reporter(buf, fmt="html", summary_stream=None,
                 html_template="{{ total }}|{{ summary }}").render(_single())
        assert buf.getvalue() == "1|1 error emitted"

    def test_unknown_format(self):
        with pytest.raises(ValueError, match="unknown report format"):
            Reporter(io.StringIO(), fmt="xml")

    def test_all_formats_render_empty_report(self):
        for fmt in FORMATS:
            render_report(AnalysisReport(), fmt)


class TestSummary:

    def test_summary_goes_to_summary_stream(self, report):
        out, err = io.StringIO(), io.StringIO()
        stats = Reporter(out, fmt="text", summary_stream=err).render(report)
        assert stats.warning == 1
        assert err.getvalue() == "  1 warning emitted\n"

    def test_no_summary_for_machine_formats(self, report):
        out, err = io.StringIO(), io.StringIO()
        Reporter(out, fmt="json", summary_stream=err).render(report)
        assert err.getvalue() == ""

    def test_stats(self):
        stats = ReporterStats()
        assert stats.summary_line() == "no diagnostics"
        stats.record(Severity.ERROR)
        stats.record(Severity.ERROR)
        stats.record(Severity.STYLE)
        assert stats.total == 3
        assert stats.summary_line() == "2 errors, 1 style emitted"
