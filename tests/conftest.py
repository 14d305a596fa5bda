# tests/conftest.py
"""
Shared fixtures for the nullflow test-suite.

Procedures are built with :class:`nullflow.ProcedureBuilder`; the fixtures
below only wire up registries, analyzers and a few extern signatures that
several test modules call into.
"""

import json

import pytest

from nullflow import (
    AnalysisOptions,
    ContractRegistry,
    NullState,
    PostconditionConditional,
    ProcedureAnalyzer,
    ProcedureBuilder,
    ReturnPostcondition,
    Unreachability,
)
from nullflow.ir import (
    Assign,
    Branch,
    Evaluate,
    Literal,
    MemberRead,
    Read,
    Return,
    null_test,
)


# ─────────────────────────────────────────────────────────────────
#  Extern signatures
# ─────────────────────────────────────────────────────────────────

def _externs():
    return [
        # static bool IsNullOrEmpty([NotNullWhen(false)] string? value)
        ProcedureBuilder("String.IsNullOrEmpty")
        .parameter("value", "nullable", "string")
        .returns("bool")
        .contract(PostconditionConditional("value", when_return=False))
        .signature(),
        # static void FailIf([DoesNotReturnIf(true)] bool condition)
        ProcedureBuilder("Guard.FailIf")
        .parameter("condition", "non-nullable", "bool")
        .contract(Unreachability("condition", when_value=True))
        .signature(),
        # static void Assert([DoesNotReturnIf(false)] bool condition)
        ProcedureBuilder("Debug.Assert")
        .parameter("condition", "non-nullable", "bool")
        .contract(Unreachability("condition", when_value=False))
        .signature(),
        # [DoesNotReturn] static void FailFast()
        ProcedureBuilder("Environment.FailFast")
        .contract(Unreachability())
        .signature(),
        # static void Print(string text)
        ProcedureBuilder("Console.Print")
        .parameter("text", "non-nullable", "string")
        .signature(),
        # [return: NotNullIfNotNull("path")] static string? Normalize(string? path)
        ProcedureBuilder("Path.Normalize")
        .parameter("path", "nullable", "string")
        .returns("string", "nullable")
        .contract(ReturnPostcondition(if_not_null="path"))
        .signature(),
    ]


@pytest.fixture
def registry():
    """A registry pre-loaded with the extern signatures above."""
    reg = ContractRegistry()
    for sig in _externs():
        reg.register(sig)
    return reg


@pytest.fixture
def extern_signatures():
    return _externs()


@pytest.fixture
def analyze(registry):
    """``analyze(procedure, **options)`` → ProcedureResult."""
    def _run(procedure, initial_state=None, strategy=None, trace=False, **options):
        kwargs = {"trace": trace}
        if strategy is not None:
            kwargs["strategy"] = strategy
        analyzer = ProcedureAnalyzer(registry, AnalysisOptions(**options), **kwargs)
        return analyzer.analyze(procedure, initial_state)
    return _run


# ─────────────────────────────────────────────────────────────────
#  Reusable procedures
# ─────────────────────────────────────────────────────────────────

@pytest.fixture
def guarded_deref():
    """``if (x == null) return; x.Member;``"""
    return (
        ProcedureBuilder("Demo.GuardedDeref", file="Demo.cs", line=3)
        .parameter("x", "nullable", "string")
        .block(0, [Branch(null_test(Read("x"), "== null"), line=4)], true=1, false=2)
        .block(1, [Return(line=5)])
        .block(2, [Evaluate(MemberRead(Read("x"), "Member"), line=6)])
        .build()
    )


@pytest.fixture
def unguarded_deref():
    """``x.Member;``"""
    return (
        ProcedureBuilder("Demo.UnguardedDeref", file="Demo.cs", line=10)
        .parameter("x", "nullable", "string")
        .block(0, [Evaluate(MemberRead(Read("x"), "Member"), line=11, column=9)])
        .build()
    )


@pytest.fixture
def loop_procedure():
    """
    ::

        cur = "start";
        while (cur != null) { cur.Length; cur = x; }
        return;
    """
    return (
        ProcedureBuilder("Demo.Loop", file="Demo.cs", line=20)
        .parameter("x", "nullable", "string")
        .local("cur", "nullable", "string")
        .block(0, [Assign("cur", Literal("start"))], next=1)
        .block(1, [Branch(null_test(Read("cur"), "!= null"))], true=2, false=3)
        .block(2, [
            Evaluate(MemberRead(Read("cur"), "Length")),
            Assign("cur", Read("x")),
        ], next=1)
        .block(3, [Return()])
        .build()
    )


@pytest.fixture
def student_unit_json():
    """JSON input document with a contract-carrying setter and its caller."""
    doc = {
        "unit": "Student.cs",
        "procedures": [
            {
                "id": "Student.SetEmptyIfNull",
                "file": "Student.cs",
                "line": 12,
                "parameters": [
                    {"name": "text", "type": "string",
                     "nullability": "nullable", "ref": True},
                ],
                "returns": {"type": "void"},
                "contracts": [{"kind": "precondition", "parameter": "text"}],
                "blocks": [
                    {"id": 0,
                     "statements": [{"op": "guard", "operand": "text",
                                     "form": "== null", "line": 13}],
                     "successors": [{"target": 1, "condition": "true"},
                                    {"target": 2, "condition": "false"}]},
                    {"id": 1,
                     "statements": [{"op": "assign", "target": "text",
                                     "value": {"kind": "literal", "value": ""},
                                     "line": 14}],
                     "successors": [{"target": 2}]},
                    {"id": 2, "statements": [{"op": "return", "line": 15}]},
                ],
            },
            {
                "id": "Student.PrintName",
                "file": "Student.cs",
                "line": 20,
                "parameters": [
                    {"name": "name", "type": "string", "nullability": "nullable"},
                ],
                "blocks": [
                    {"id": 0,
                     "statements": [
                         {"op": "eval", "line": 21,
                          "expr": {"kind": "call", "callee": "Student.SetEmptyIfNull",
                                   "args": ["name"]}},
                         {"op": "deref", "target": "name", "member": "Length",
                          "line": 22},
                     ]},
                ],
            },
            {
                "id": "Student.PrintMiddle",
                "file": "Student.cs",
                "line": 30,
                "parameters": [
                    {"name": "middle", "type": "string", "nullability": "nullable"},
                ],
                "blocks": [
                    {"id": 0,
                     "statements": [{"op": "deref", "target": "middle",
                                     "member": "Length", "line": 31, "column": 9}]},
                ],
            },
        ],
        "externs": [
            {"id": "Console.Print",
             "parameters": [{"name": "text", "type": "string",
                             "nullability": "non-nullable"}],
             "returns": {"type": "void"}},
        ],
    }
    return json.dumps(doc)


@pytest.fixture
def unit_file(tmp_path, student_unit_json):
    path = tmp_path / "Student.json"
    path.write_text(student_unit_json, encoding="utf-8")
    return path


@pytest.fixture
def all_states():
    return list(NullState)
