# tests/test_transfer.py
"""
Tests for the per-statement transfer functions: calls and their contracts,
the null-forgiving and coalescing operators, conditional access, boolean
guards and the assignment / argument / return checks.
"""

import pytest

from nullflow import (
    ContractRegistry,
    MemberPostcondition,
    NullState,
    PostconditionUnconditional,
    Precondition,
    ProcedureBuilder,
    ReturnPostcondition,
    StateMap,
)
from nullflow.ir import (
    THIS,
    And,
    Assign,
    Branch,
    Call,
    Coalesce,
    Evaluate,
    Forgive,
    Literal,
    MemberRead,
    Not,
    NullLiteral,
    Or,
    Read,
    Return,
    Throw,
    ThrowExpr,
    null_test,
)
from nullflow.transfer import StateTransformer

NN = NullState.NON_NULL
N = NullState.NULL
MN = NullState.MAYBE_NULL


def _deref(name, member="Length"):
    return Evaluate(MemberRead(Read(name), member))


# ── calls ────────────────────────────────────────────────────────

class TestCalls:

    def test_conditional_postcondition_refines_branch(self, analyze):
        """if (!string.IsNullOrEmpty(s)) s.Length;"""
        proc = (
            ProcedureBuilder("Demo.NotEmpty")
            .parameter("s", "nullable", "string")
            .block(0, [Branch(Not(Call("String.IsNullOrEmpty", (Read("s"),))))],
                   true=1, false=2)
            .block(1, [_deref("s")])
            .block(2, [Return()])
            .build()
        )
        result = analyze(proc)
        assert result.diagnostics == []
        assert result.state_at(1, before=True)["s"] is NN

    def test_conditional_postcondition_wrong_edge(self, analyze):
        proc = (
            ProcedureBuilder("Demo.Empty")
            .parameter("s", "nullable", "string")
            .block(0, [Branch(Call("String.IsNullOrEmpty", (Read("s"),)))],
                   true=1, false=2)
            .block(1, [_deref("s")])
            .block(2, [Return()])
            .build()
        )
        assert analyze(proc).kinds() == ["PossibleNullDereference"]

    def test_unknown_callee_returns_maybe_null(self, analyze):
        proc = (
            ProcedureBuilder("Demo.Unknown")
            .local("r", "nullable", "string")
            .block(0, [Assign("r", Call("Lib.Lookup")), _deref("r")])
            .build()
        )
        result = analyze(proc)
        assert result.kinds() == ["PossibleNullDereference"]
        assert result.diagnostics[0].binding == "r"

    def test_declared_return_nullability(self, analyze, registry):
        registry.register(
            ProcedureBuilder("Lib.Name").returns("string", "non-nullable").signature()
        )
        proc = (
            ProcedureBuilder("Demo.Known")
            .local("r", "nullable", "string")
            .block(0, [Assign("r", Call("Lib.Name")), _deref("r")])
            .build()
        )
        assert analyze(proc).diagnostics == []

    @pytest.mark.parametrize("arg_nullability,expected", [
        ("non-nullable", []),
        ("nullable", ["PossibleNullDereference"]),
    ])
    def test_return_not_null_if_not_null(self, analyze, arg_nullability, expected):
        proc = (
            ProcedureBuilder("Demo.Normalize")
            .parameter("p", arg_nullability, "string")
            .local("r", "nullable", "string")
            .block(0, [Assign("r", Call("Path.Normalize", (Read("p"),))), _deref("r")])
            .build()
        )
        assert analyze(proc).kinds() == expected

    def test_null_argument_to_non_nullable_parameter(self, analyze):
        proc = (
            ProcedureBuilder("Demo.Print")
            .parameter("s", "nullable", "string")
            .block(0, [Evaluate(Call("Console.Print", (Read("s"),)))])
            .build()
        )
        result = analyze(proc)
        assert result.kinds() == ["PossibleNullArgument"]
        assert result.diagnostics[0].binding == "s"
        assert result.diagnostics[0].kind.cwe == 476

    def test_receiver_is_dereferenced(self, analyze):
        proc = (
            ProcedureBuilder("Demo.Receiver")
            .parameter("s", "nullable", "string")
            .block(0, [Evaluate(Call("Trim", receiver=Read("s"))), _deref("s")])
            .build()
        )
        result = analyze(proc)
        assert result.kinds() == ["PossibleNullDereference"]
        assert result.diagnostics[0].statement_index == 0

    def test_ref_argument_without_contract(self, analyze, registry):
        registry.register(
            ProcedureBuilder("Lib.Reset")
            .parameter("value", "nullable", "string", ref=True)
            .signature()
        )
        proc = (
            ProcedureBuilder("Demo.Reset")
            .local("s", "nullable", "string")
            .block(0, [
                Assign("s", Literal("x")),
                Evaluate(Call("Lib.Reset", (Read("s"),))),
                _deref("s"),
            ])
            .build()
        )
        result = analyze(proc)
        assert result.kinds() == ["PossibleNullDereference"]
        assert result.diagnostics[0].statement_index == 2

    def test_requires_on_entry(self, analyze, registry):
        registry.register(
            ProcedureBuilder("Lib.Use")
            .parameter("value", "nullable", "string")
            .contract(Precondition("value", requires_on_entry=True))
            .signature()
        )
        proc = (
            ProcedureBuilder("Demo.Use")
            .parameter("s", "nullable", "string")
            .block(0, [Evaluate(Call("Lib.Use", (Read("s"),)))])
            .build()
        )
        assert analyze(proc).kinds() == ["PossibleNullArgument"]

    def test_requires_on_entry_inside_callee(self, analyze):
        proc = (
            ProcedureBuilder("Demo.Callee")
            .parameter("value", "nullable", "string")
            .contract(Precondition("value", requires_on_entry=True))
            .block(0, [_deref("value")])
            .build()
        )
        assert analyze(proc).diagnostics == []

    def test_unconditional_postcondition_on_argument(self, analyze, registry):
        """static void Ensure([NotNull] string? value); Ensure(s); s.Length;"""
        assert registry.register(
            ProcedureBuilder("Lib.Ensure")
            .parameter("value", "nullable", "string")
            .contract(PostconditionUnconditional("value"))
            .signature()
        ) == []
        proc = (
            ProcedureBuilder("Demo.Ensure")
            .parameter("s", "nullable", "string")
            .block(0, [Evaluate(Call("Lib.Ensure", (Read("s"),))), _deref("s")])
            .build()
        )
        result = analyze(proc)
        assert result.diagnostics == []
        assert result.state_at(0)["s"] is NN


# ── member postconditions at call sites ──────────────────────────

def _this_name_length():
    return Evaluate(MemberRead(MemberRead(Read(THIS), "Name"), "Length"))


class TestMemberPostconditionCalls:

    @pytest.fixture
    def init_registry(self, registry):
        """``[MemberNotNull(Name)] void Init()`` and
        ``[MemberNotNullWhen(true, Name)] bool TryInit()``."""
        assert registry.register(
            ProcedureBuilder("Student.Init")
            .field("Name", "nullable", "string")
            .contract(MemberPostcondition(("Name",)))
            .signature()
        ) == []
        assert registry.register(
            ProcedureBuilder("Student.TryInit")
            .field("Name", "nullable", "string")
            .returns("bool")
            .contract(MemberPostcondition(("Name",), when_return=True))
            .signature()
        ) == []
        return registry

    def test_unconditional_member_postcondition(self, analyze, init_registry):
        """Init(); this.Name.Length;"""
        proc = (
            ProcedureBuilder("Student.Print")
            .field("Name", "nullable", "string")
            .block(0, [Evaluate(Call("Student.Init")), _this_name_length()])
            .build()
        )
        result = analyze(proc)
        assert result.diagnostics == []
        assert result.state_at(0)["Name"] is NN

    def test_member_maybe_null_without_call(self, analyze, init_registry):
        proc = (
            ProcedureBuilder("Student.Print")
            .field("Name", "nullable", "string")
            .block(0, [_this_name_length()])
            .build()
        )
        assert analyze(proc).kinds() == ["PossibleNullDereference"]

    def test_member_postcondition_on_other_receiver(self, analyze, init_registry):
        """s.Init(); s.Name.Length;"""
        proc = (
            ProcedureBuilder("Demo.Other")
            .parameter("s", "non-nullable", "Student")
            .block(0, [
                Evaluate(Call("Student.Init", receiver=Read("s"))),
                Evaluate(MemberRead(MemberRead(Read("s"), "Name"), "Length")),
            ])
            .build()
        )
        result = analyze(proc)
        assert result.diagnostics == []
        assert result.state_at(0)["s.Name"] is NN

    def test_conditional_member_postcondition_edges(self, analyze, init_registry):
        """if (TryInit()) this.Name.Length; else this.Name.Length;"""
        proc = (
            ProcedureBuilder("Student.MaybePrint")
            .field("Name", "nullable", "string")
            .block(0, [Branch(Call("Student.TryInit"))], true=1, false=2)
            .block(1, [_this_name_length()])
            .block(2, [_this_name_length()])
            .build()
        )
        result = analyze(proc)
        assert result.state_at(1, before=True)["Name"] is NN
        assert result.state_at(2, before=True)["Name"] is MN
        assert [(d.block_id, d.binding) for d in result.diagnostics] == [(2, "Name")]


# ── unreachability ───────────────────────────────────────────────

class TestUnreachability:

    def test_assert_narrows_tested_binding(self, analyze):
        """Debug.Assert(x != null); x.Length;"""
        proc = (
            ProcedureBuilder("Demo.Asserted")
            .parameter("x", "nullable", "string")
            .block(0, [
                Evaluate(Call("Debug.Assert", (null_test(Read("x"), "!= null"),))),
                _deref("x"),
            ])
            .build()
        )
        assert analyze(proc).diagnostics == []

    def test_fail_if_narrows_tested_binding(self, analyze):
        """Guard.FailIf(x is null); x.Length;"""
        proc = (
            ProcedureBuilder("Demo.FailIfNull")
            .parameter("x", "nullable", "string")
            .block(0, [
                Evaluate(Call("Guard.FailIf", (null_test(Read("x"), "is null"),))),
                _deref("x"),
            ])
            .build()
        )
        assert analyze(proc).diagnostics == []

    def test_never_returning_call_cuts_path(self, analyze):
        proc = (
            ProcedureBuilder("Demo.FailFast")
            .parameter("x", "nullable", "string")
            .block(0, [Branch(null_test(Read("x"), "== null"))], true=1, false=2)
            .block(1, [Evaluate(Call("Environment.FailFast"))], next=2)
            .block(2, [_deref("x")])
            .build()
        )
        result = analyze(proc)
        assert result.diagnostics == []
        assert result.state_at(1) is None
        assert result.state_at(2, before=True)["x"] is NN

    def test_throw_statement_cuts_path(self, analyze):
        proc = (
            ProcedureBuilder("Demo.Throws")
            .parameter("s", "nullable", "string")
            .block(0, [Branch(null_test(Read("s"), "is null"))], true=1, false=2)
            .block(1, [Throw("ArgumentNullException")])
            .block(2, [_deref("s"), Return()])
            .build()
        )
        assert analyze(proc).diagnostics == []


# ── operators ────────────────────────────────────────────────────

class TestOperators:

    def _forgiven(self):
        return (
            ProcedureBuilder("Demo.Forgive")
            .parameter("x", "nullable", "string")
            .block(0, [Evaluate(MemberRead(Forgive(Read("x")), "Length")), _deref("x")])
            .build()
        )

    def test_forgiving_operator_silences(self, analyze):
        assert analyze(self._forgiven()).diagnostics == []

    def test_forgiving_operator_reported_when_not_suppressed(self, analyze):
        result = analyze(self._forgiven(), suppress_forgiving_operator_diagnostics=False)
        assert result.kinds() == ["PossibleNullDereference"]
        assert result.diagnostics[0].statement_index == 0

    def test_forgiving_non_null_operand_not_reported(self, analyze):
        proc = (
            ProcedureBuilder("Demo.ForgiveSafe")
            .parameter("x", "non-nullable", "string")
            .block(0, [Evaluate(MemberRead(Forgive(Read("x")), "Length"))])
            .build()
        )
        result = analyze(proc, suppress_forgiving_operator_diagnostics=False)
        assert result.diagnostics == []

    def test_coalesce_with_throw(self, analyze):
        """name = s ?? throw new ArgumentNullException(); s.Length; name.Length;"""
        proc = (
            ProcedureBuilder("Demo.CoalesceThrow")
            .parameter("s", "nullable", "string")
            .local("name", "nullable", "string")
            .block(0, [
                Assign("name", Coalesce(Read("s"), ThrowExpr("ArgumentNullException"))),
                _deref("s"),
                _deref("name"),
            ])
            .build()
        )
        assert analyze(proc).diagnostics == []

    def test_coalesce_with_value(self, analyze):
        proc = (
            ProcedureBuilder("Demo.CoalesceValue")
            .parameter("s", "nullable", "string")
            .local("name", "nullable", "string")
            .block(0, [Assign("name", Coalesce(Read("s"), Literal(""))), _deref("name")])
            .build()
        )
        assert analyze(proc).diagnostics == []

    def test_coalesce_with_null_fallback(self, analyze):
        proc = (
            ProcedureBuilder("Demo.CoalesceNull")
            .parameter("s", "nullable", "string")
            .local("name", "nullable", "string")
            .block(0, [Assign("name", Coalesce(Read("s"), NullLiteral())), _deref("name")])
            .build()
        )
        assert analyze(proc).kinds() == ["PossibleNullDereference"]

    def test_conditional_access(self, analyze):
        """n = s?.Name; n.Length; → only the second access is reported."""
        proc = (
            ProcedureBuilder("Demo.Conditional")
            .parameter("s", "nullable", "Student")
            .local("n", "nullable", "string")
            .block(0, [
                Assign("n", MemberRead(Read("s"), "Name", conditional=True)),
                _deref("n"),
            ])
            .build()
        )
        result = analyze(proc)
        assert result.kinds() == ["PossibleNullDereference"]
        assert result.diagnostics[0].binding == "n"


# ── compound guards ──────────────────────────────────────────────

class TestCompoundGuards:

    def test_and_guard(self, analyze):
        """if (a != null && b != null) { a.Length; b.Length; } else a.Length;"""
        proc = (
            ProcedureBuilder("Demo.Both")
            .parameter("a", "nullable", "string")
            .parameter("b", "nullable", "string")
            .block(0, [Branch(And(null_test(Read("a"), "!= null"),
                                  null_test(Read("b"), "!= null")))],
                   true=1, false=2)
            .block(1, [_deref("a"), _deref("b")])
            .block(2, [_deref("a")])
            .build()
        )
        result = analyze(proc)
        assert result.kinds() == ["PossibleNullDereference"]
        assert result.diagnostics[0].block_id == 2

    def test_or_guard(self, analyze):
        """if (a is null || b is null) return; a.Length; b.Length;"""
        proc = (
            ProcedureBuilder("Demo.Either")
            .parameter("a", "nullable", "string")
            .parameter("b", "nullable", "string")
            .block(0, [Branch(Or(null_test(Read("a"), "is null"),
                                 null_test(Read("b"), "is null")))],
                   true=1, false=2)
            .block(1, [Return()])
            .block(2, [_deref("a"), _deref("b")])
            .build()
        )
        assert analyze(proc).diagnostics == []

    def test_short_circuit_guards_right_operand(self, analyze):
        """if (s != null && s.Name != null) s.Name.Length;"""
        name = MemberRead(Read("s"), "Name")
        proc = (
            ProcedureBuilder("Demo.ShortCircuit")
            .parameter("s", "nullable", "Student")
            .block(0, [Branch(And(null_test(Read("s"), "!= null"),
                                  null_test(name, "!= null")))],
                   true=1, false=2)
            .block(1, [Evaluate(MemberRead(name, "Length"))])
            .block(2, [Return()])
            .build()
        )
        assert analyze(proc).diagnostics == []

    def test_literal_condition_prunes_edge(self, analyze):
        proc = (
            ProcedureBuilder("Demo.Literal")
            .parameter("x", "nullable", "string")
            .block(0, [Branch(Literal(True))], true=1, false=2)
            .block(1, [Return()])
            .block(2, [_deref("x")])
            .build()
        )
        result = analyze(proc)
        assert result.diagnostics == []
        assert result.state_at(2, before=True) is None


# ── assignment / return checks ───────────────────────────────────

class TestAssignmentAndReturn:

    def test_null_assigned_to_non_nullable(self, analyze):
        proc = (
            ProcedureBuilder("Demo.AssignNull")
            .local("name", "non-nullable", "string")
            .block(0, [Assign("name", NullLiteral())])
            .build()
        )
        result = analyze(proc)
        assert result.kinds() == ["PossibleNullAssignment"]
        assert result.diagnostics[0].binding == "name"

    def test_unconstrained_follows_option(self, analyze):
        proc = (
            ProcedureBuilder("Demo.Generic")
            .parameter("value", "unconstrained", "T")
            .block(0, [_deref("value")])
            .build()
        )
        assert analyze(proc).kinds() == ["PossibleNullDereference"]
        relaxed = analyze(proc, treat_unconstrained_generics_as_nullable=False)
        assert relaxed.diagnostics == []

    def test_nullable_returned_from_non_nullable(self, analyze):
        proc = (
            ProcedureBuilder("Demo.GetName")
            .parameter("s", "nullable", "string")
            .returns("string")
            .block(0, [Return(Read("s"))])
            .build()
        )
        result = analyze(proc)
        assert result.kinds() == ["PossibleNullReturn"]
        assert result.diagnostics[0].binding == "s"

    def test_maybe_null_return_contract(self, analyze):
        proc = (
            ProcedureBuilder("Demo.FindName")
            .parameter("s", "nullable", "string")
            .returns("string")
            .contract(ReturnPostcondition(NullState.MAYBE_NULL))
            .block(0, [Return(Read("s"))])
            .build()
        )
        assert analyze(proc).diagnostics == []

    def test_nullable_return_type(self, analyze):
        proc = (
            ProcedureBuilder("Demo.MaybeName")
            .returns("string", "nullable")
            .block(0, [Return(NullLiteral())])
            .build()
        )
        assert analyze(proc).diagnostics == []


# ── transformer in isolation ─────────────────────────────────────

class TestStateTransformer:

    def _transformer(self, **bindings):
        builder = ProcedureBuilder("Demo.Unit")
        for name, nullability in bindings.items():
            builder.local(name, nullability, "string")
        builder.block(0, [Return()])
        return StateTransformer(builder.build(), ContractRegistry())

    def test_lookup_falls_back_to_declaration(self):
        tf = self._transformer(a="non-nullable", b="nullable")
        empty = StateMap()
        assert tf.lookup(empty, "a") is NN
        assert tf.lookup(empty, "b") is MN
        assert tf.lookup(empty, "unknown.Path") is MN

    def test_write_drops_member_paths(self):
        tf = self._transformer(s="nullable")
        state = StateMap({"s": NN, "s.Name": NN, "sx": NN})
        out = tf.write(state, "s", MN)
        assert "s.Name" not in out
        assert out["sx"] is NN
        assert out["s"] is MN

    def test_refine_not_and_forgive(self):
        tf = self._transformer(x="nullable")
        state = StateMap({"x": MN})
        test = null_test(Read("x"), "is null")
        assert tf.refine(state, Not(test), True)["x"] is NN
        assert tf.refine(state, Forgive(test), True)["x"] is N
        assert tf.refine(state, Literal(False), True) is None

    def test_value_of_is_silent(self):
        tf = self._transformer(x="nullable")
        assert tf.value_of(MemberRead(Read("x"), "Length"), StateMap({"x": MN})) is MN
