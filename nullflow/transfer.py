"""
nullflow.transfer
=================

Per-statement state transformer.

:class:`StateTransformer` maps the state before a statement to the state
after it, and refines a state along one edge of a branch.  The same code
runs twice per procedure:

1. inside the fixed-point loop (``report=False``), where it only computes
   states;
2. in the reporting pass over the converged in-states (``report=True``),
   where it additionally emits diagnostics into a
   :class:`nullflow.checkers.DiagnosticCollector`.

A result of ``None`` means control does not continue past the statement
(a ``throw``, or a call that provably does not return).

Public API
----------
    StateTransformer
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from nullflow.checkers import DiagnosticCollector, DiagnosticKind
from nullflow.config import AnalysisOptions
from nullflow.contracts import (
    RETURN_BINDING,
    ContractRegistry,
    MemberPostcondition,
    PostconditionConditional,
    PostconditionUnconditional,
    Precondition,
    ReturnPostcondition,
    Unreachability,
)
from nullflow.ctrlflow_graph import CFGEdge, CFGNode, EdgeKind
from nullflow.ir import (
    THIS,
    And,
    Assign,
    Binding,
    Branch,
    Call,
    Coalesce,
    Evaluate,
    Expr,
    Forgive,
    Literal,
    MemberRead,
    Not,
    NullabilityKind,
    NullLiteral,
    NullTest,
    Or,
    Procedure,
    ProcedureSignature,
    Read,
    Return,
    Statement,
    Throw,
    ThrowExpr,
)
from nullflow.lattice import GuardOutcome, NullState, StateMap, join, narrow

logger = logging.getLogger(__name__)

# (value state, state after evaluation); None when evaluation does not complete
Evaluation = Optional[Tuple[NullState, StateMap]]


class StateTransformer:
    """Transfer functions of one procedure.

    Parameters
    ----------
    procedure : Procedure
        Procedure under analysis (supplies declared bindings).
    registry : ContractRegistry
        Signatures and contracts of callees and of the procedure itself.
    options : AnalysisOptions, optional
    collector : DiagnosticCollector, optional
        Receives diagnostics during the reporting pass.
    """

    def __init__(
        self,
        procedure: Procedure,
        registry: ContractRegistry,
        options: Optional[AnalysisOptions] = None,
        collector: Optional[DiagnosticCollector] = None,
    ) -> None:
        self.procedure = procedure
        self.registry = registry
        self.options = options or AnalysisOptions()
        self.collector = collector
        self._bindings: Dict[str, Binding] = procedure.bindings()
        self._dependents: Dict[str, List[Binding]] = {}
        for prop in procedure.properties:
            for dep in prop.depends_on:
                self._dependents.setdefault(dep, []).append(prop)
        self._own_contracts = registry.resolve_contracts(procedure.id)
        self._reporting = False
        self._loc: Tuple[Optional[int], int, int, int] = (None, -1, 0, 0)
        self._member_defaults: Dict[str, NullState] = {}

    # ----- declared defaults ------------------------------------------------

    def effective(self, nullability: NullabilityKind) -> NullabilityKind:
        """Resolve ``Unconstrained`` according to the options."""
        if nullability is NullabilityKind.UNCONSTRAINED:
            if self.options.treat_unconstrained_generics_as_nullable:
                return NullabilityKind.NULLABLE
            return NullabilityKind.NON_NULLABLE
        return nullability

    def default_state(self, nullability: NullabilityKind) -> NullState:
        if self.effective(nullability) is NullabilityKind.NON_NULLABLE:
            return NullState.NON_NULL
        return NullState.MAYBE_NULL

    def lookup(self, state: StateMap, path: str) -> NullState:
        """State of *path*, falling back to its declared nullability."""
        if path in state:
            return state[path]
        return self.path_default(path)

    def path_default(self, path: str) -> NullState:
        """Declared state of *path* when no state map binds it.

        Member paths get the nullability of the member reads seen so far;
        unknown paths are ``MaybeNull``.
        """
        binding = self._bindings.get(path)
        if binding is not None:
            return self.default_state(binding.nullability)
        return self._member_defaults.get(path, NullState.MAYBE_NULL)

    # ----- block / edge transfer --------------------------------------------

    def transfer_block(
        self, node: CFGNode, state: StateMap, report: bool = False
    ) -> Optional[StateMap]:
        """Run every statement of *node*; ``None`` if control stops inside it."""
        self._reporting = report and self.collector is not None
        try:
            for idx, stmt in enumerate(node.statements):
                self._loc = (node.id, idx, stmt.line, stmt.column)
                state = self.execute(stmt, state)
                if state is None:
                    return None
            return state
        finally:
            self._reporting = False

    def edge_transfer(self, edge: CFGEdge, state: Optional[StateMap]) -> Optional[StateMap]:
        """Refine the out-state of a branch block along one of its edges."""
        if state is None or not edge.kind.is_conditional:
            return state
        branch = edge.src.branch
        if branch is None:
            return state
        return self.refine(state, branch.condition, edge.kind is EdgeKind.BRANCH_TRUE)

    # ----- statements -------------------------------------------------------

    def execute(self, stmt: Statement, state: StateMap) -> Optional[StateMap]:
        if isinstance(stmt, Assign):
            return self._assign(stmt, state)
        if isinstance(stmt, (Evaluate, Branch)):
            expr = stmt.expr if isinstance(stmt, Evaluate) else stmt.condition
            result = self.evaluate(expr, state)
            return None if result is None else result[1]
        if isinstance(stmt, Return):
            return self._return(stmt, state)
        if isinstance(stmt, Throw):
            return None
        raise TypeError(f"unsupported statement: {stmt!r}")

    def _assign(self, stmt: Assign, state: StateMap) -> Optional[StateMap]:
        result = self.evaluate(stmt.value, state)
        if result is None:
            return None
        value, state = result
        binding = self._bindings.get(stmt.target)
        if (
            binding is not None
            and self.effective(binding.nullability) is NullabilityKind.NON_NULLABLE
            and value is not NullState.NON_NULL
        ):
            self._report(
                DiagnosticKind.POSSIBLE_NULL_ASSIGNMENT, stmt.target,
                f"possible {value} value assigned to non-nullable '{stmt.target}'",
            )
        return self.write(state, stmt.target, value)

    def _return(self, stmt: Return, state: StateMap) -> Optional[StateMap]:
        if stmt.value is None:
            return state
        result = self.evaluate(stmt.value, state)
        if result is None:
            return None
        value, state = result
        sig = self.procedure.signature
        may_return_null = any(
            isinstance(c, ReturnPostcondition) and c.state is NullState.MAYBE_NULL
            for c in self._own_contracts
        )
        if (
            sig.returns_value
            and self.effective(sig.return_nullability) is NullabilityKind.NON_NULLABLE
            and value is not NullState.NON_NULL
            and not may_return_null
        ):
            self._report(
                DiagnosticKind.POSSIBLE_NULL_RETURN,
                stmt.value.path() or RETURN_BINDING,
                f"possible {value} value '{stmt.value.describe()}' returned from "
                f"{sig.name}, whose return type is non-nullable",
            )
        return state

    def write(self, state: StateMap, path: str, value: NullState) -> StateMap:
        """Store *value* into *path*, discarding facts derived from its old value."""
        prefix = path + "."
        states = {k: v for k, v in state.items() if not k.startswith(prefix)}
        for prop in self._dependents.get(path, ()):
            states[prop.name] = self.default_state(prop.nullability)
        states[path] = value
        return StateMap(states)

    # ----- expressions ------------------------------------------------------

    def value_of(self, expr: Expr, state: StateMap) -> NullState:
        """Value state of *expr* in *state*, without emitting diagnostics."""
        reporting, self._reporting = self._reporting, False
        try:
            result = self.evaluate(expr, state)
        finally:
            self._reporting = reporting
        return NullState.NON_NULL if result is None else result[0]

    def evaluate(self, expr: Expr, state: StateMap) -> Evaluation:
        """Evaluate *expr* left to right; return its value state and the new state."""
        if isinstance(expr, NullLiteral):
            return NullState.NULL, state
        if isinstance(expr, Literal):
            return NullState.NON_NULL, state
        if isinstance(expr, Read):
            if expr.name == THIS:
                return NullState.NON_NULL, state
            return self.lookup(state, expr.name), state
        if isinstance(expr, MemberRead):
            return self._member(expr, state)
        if isinstance(expr, Call):
            return self._call(expr, state)
        if isinstance(expr, Forgive):
            return self._forgive(expr, state)
        if isinstance(expr, Coalesce):
            return self._coalesce(expr, state)
        if isinstance(expr, ThrowExpr):
            return None
        if isinstance(expr, NullTest):
            return self._null_test(expr, state)
        if isinstance(expr, Not):
            result = self.evaluate(expr.operand, state)
            return None if result is None else (NullState.NON_NULL, result[1])
        if isinstance(expr, (And, Or)):
            return self._logical(expr, state)
        raise TypeError(f"unsupported expression: {expr!r}")

    def _member(self, expr: MemberRead, state: StateMap) -> Evaluation:
        result = self.evaluate(expr.receiver, state)
        if result is None:
            return None
        receiver, state = result
        if expr.conditional:
            if receiver is NullState.NULL:
                return NullState.NULL, state
            value = self._member_state(expr, state)
            if receiver is NullState.MAYBE_NULL:
                value = join(value, NullState.NULL)
            return value, state
        state = self._dereference(expr.receiver, receiver, state)
        return self._member_state(expr, state), state

    def _member_state(self, expr: MemberRead, state: StateMap) -> NullState:
        declared = self.default_state(expr.nullability)
        path = expr.path()
        if path is not None:
            if path in self._bindings:
                return self.lookup(state, path)
            seen = self._member_defaults.get(path)
            self._member_defaults[path] = declared if seen is None else join(seen, declared)
            if path in state:
                return state[path]
        return declared

    def _dereference(self, receiver: Expr, value: NullState, state: StateMap) -> StateMap:
        if isinstance(receiver, Read) and receiver.name == THIS:
            return state
        path = receiver.path()
        if value is not NullState.NON_NULL:
            self._report(
                DiagnosticKind.POSSIBLE_NULL_DEREFERENCE,
                path or receiver.describe(),
                f"possible null dereference: '{receiver.describe()}' may be {value} here",
            )
        if path is not None:
            state = state.set(path, NullState.NON_NULL)
        return state

    def _forgive(self, expr: Forgive, state: StateMap) -> Evaluation:
        result = self.evaluate(expr.operand, state)
        if result is None:
            return None
        value, state = result
        path = expr.operand.path()
        if (
            value is not NullState.NON_NULL
            and not self.options.suppress_forgiving_operator_diagnostics
        ):
            self._report(
                DiagnosticKind.POSSIBLE_NULL_DEREFERENCE,
                path or expr.operand.describe(),
                f"null-forgiving operator applied to '{expr.operand.describe()}', "
                f"which may be {value} here",
            )
        if path is not None:
            state = state.set(path, NullState.NON_NULL)
        return NullState.NON_NULL, state

    def _coalesce(self, expr: Coalesce, state: StateMap) -> Evaluation:
        result = self.evaluate(expr.left, state)
        if result is None:
            return None
        left, state = result
        if left is NullState.NON_NULL:
            return NullState.NON_NULL, state
        path = expr.left.path()
        right_in = state.set(path, NullState.NULL) if path else state
        right = self.evaluate(expr.right, right_in)
        if left is NullState.NULL:
            return right
        left_out = state.set(path, NullState.NON_NULL) if path else state
        if right is None:
            return NullState.NON_NULL, left_out
        value, right_out = right
        return join(NullState.NON_NULL, value), left_out.join(right_out, self.path_default)

    def _null_test(self, expr: NullTest, state: StateMap) -> Evaluation:
        result = self.evaluate(expr.operand, state)
        if result is None:
            return None
        value, state = result
        path = expr.operand.path()
        if path is not None and value.is_definite:
            self._report(
                DiagnosticKind.REDUNDANT_NULL_CHECK, path,
                f"'{expr.operand.describe()}' is always {value} here; "
                f"the check '{expr.describe()}' is redundant",
            )
        return NullState.NON_NULL, state

    def _logical(self, expr: Expr, state: StateMap) -> Evaluation:
        # right operand runs only when the left one did not decide the result
        result = self.evaluate(expr.left, state)
        if result is None:
            return None
        state = result[1]
        continues = isinstance(expr, And)
        decided = self.refine(state, expr.left, not continues)
        go_on = self.refine(state, expr.left, continues)
        out = decided
        if go_on is not None:
            right = self.evaluate(expr.right, go_on)
            if right is not None:
                out = right[1] if out is None else out.join(right[1], self.path_default)
        if out is None:
            return None
        return NullState.NON_NULL, out

    # ----- calls ------------------------------------------------------------

    def _call(self, expr: Call, state: StateMap) -> Evaluation:
        if expr.receiver is not None:
            result = self.evaluate(expr.receiver, state)
            if result is None:
                return None
            receiver, state = result
            state = self._dereference(expr.receiver, receiver, state)

        args: List[NullState] = []
        for arg in expr.args:
            result = self.evaluate(arg, state)
            if result is None:
                return None
            args.append(result[0])
            state = result[1]

        sig = self.registry.signature(expr.callee)
        if sig is None:
            if self._reporting:
                logger.debug("%s: unknown callee %s", self.procedure.id, expr.callee)
            return NullState.MAYBE_NULL, state
        contracts = self.registry.resolve_contracts(sig)

        required = {
            c.parameter for c in contracts
            if isinstance(c, Precondition) and c.requires_on_entry
        }
        for param, arg, value in zip(sig.parameters, expr.args, args):
            needs_value = (
                self.effective(param.nullability) is NullabilityKind.NON_NULLABLE
                or param.name in required
            )
            if needs_value and value is not NullState.NON_NULL:
                self._report(
                    DiagnosticKind.POSSIBLE_NULL_ARGUMENT,
                    arg.path() or param.name,
                    f"possible {value} argument '{arg.describe()}' for non-nullable "
                    f"parameter '{param.name}' of {sig.name}",
                )

        for contract in contracts:
            if not isinstance(contract, Unreachability):
                continue
            if contract.parameter is None:
                return None
            idx = sig.parameter_index(contract.parameter)
            if 0 <= idx < len(expr.args):
                refined = self.refine(state, expr.args[idx], not contract.when_value)
                if refined is None:
                    return None
                state = refined

        for idx, param in enumerate(sig.parameters):
            if not param.is_ref or idx >= len(expr.args):
                continue
            path = expr.args[idx].path()
            if path is not None:
                state = self.write(state, path, self.default_state(param.nullability))

        for contract in contracts:
            if isinstance(contract, Precondition):
                state = self._bind_target(state, sig, expr, contract.parameter, NullState.NON_NULL)
            elif isinstance(contract, PostconditionUnconditional):
                state = self._bind_target(state, sig, expr, contract.target, contract.state)
            elif isinstance(contract, MemberPostcondition) and contract.when_return is None:
                for member in contract.members:
                    state = self._bind_field(state, expr.receiver, member, NullState.NON_NULL)

        return self._call_result(sig, expr, args), state

    def _call_result(
        self, sig: ProcedureSignature, expr: Call, args: List[NullState]
    ) -> NullState:
        for contract in self.registry.resolve_contracts(sig):
            if not isinstance(contract, ReturnPostcondition):
                continue
            if contract.if_not_null is None:
                return contract.state
            idx = sig.parameter_index(contract.if_not_null)
            if 0 <= idx < len(args) and args[idx] is NullState.NON_NULL:
                return NullState.NON_NULL
        return self.default_state(sig.return_nullability)

    def _bind_target(
        self,
        state: StateMap,
        sig: ProcedureSignature,
        call: Call,
        target: str,
        value: NullState,
    ) -> StateMap:
        """Apply a contract about callee *target* to the caller's state."""
        idx = sig.parameter_index(target)
        if idx >= 0:
            if idx >= len(call.args):
                return state
            path = call.args[idx].path()
            if path is None:
                return state
            if sig.parameters[idx].is_ref:
                return self.write(state, path, value)
            return state.set(path, value)
        return self._bind_field(state, call.receiver, target, value)

    @staticmethod
    def _bind_field(
        state: StateMap, receiver: Optional[Expr], member: str, value: NullState
    ) -> StateMap:
        if receiver is None or (isinstance(receiver, Read) and receiver.name == THIS):
            return state.set(member, value)
        base = receiver.path()
        if base is None:
            return state
        return state.set(f"{base}.{member}", value)

    # ----- conditions -------------------------------------------------------

    def refine(self, state: StateMap, cond: Expr, outcome: bool) -> Optional[StateMap]:
        """State after *cond* evaluated to *outcome*; ``None`` if impossible."""
        if isinstance(cond, Literal) and cond.is_boolean:
            return state if cond.value == outcome else None
        if isinstance(cond, NullTest):
            path = cond.operand.path()
            if path is None:
                return state
            guard = (
                GuardOutcome.NON_NULL if cond.when_true is NullState.NON_NULL
                else GuardOutcome.NULL
            )
            if not outcome:
                guard = guard.negate()
            return state.set(path, narrow(self.lookup(state, path), guard))
        if isinstance(cond, Not):
            return self.refine(state, cond.operand, not outcome)
        if isinstance(cond, Forgive):
            return self.refine(state, cond.operand, outcome)
        if isinstance(cond, (And, Or)):
            # And: true needs both; Or: false needs both
            both = isinstance(cond, And) == outcome
            first = self.refine(state, cond.left, outcome if both else not outcome)
            if both:
                return None if first is None else self.refine(first, cond.right, outcome)
            either = self.refine(state, cond.left, outcome)
            second = None if first is None else self.refine(first, cond.right, outcome)
            if either is None:
                return second
            if second is None:
                return either
            return either.join(second, self.path_default)
        if isinstance(cond, Call):
            return self._refine_call(state, cond, outcome)
        return state

    def _refine_call(self, state: StateMap, call: Call, outcome: bool) -> StateMap:
        sig = self.registry.signature(call.callee)
        if sig is None:
            return state
        for contract in self.registry.resolve_contracts(sig):
            if isinstance(contract, PostconditionConditional):
                if contract.when_return == outcome:
                    state = self._bind_target(state, sig, call, contract.target, contract.state)
            elif isinstance(contract, MemberPostcondition):
                if contract.when_return is not None and contract.when_return == outcome:
                    for member in contract.members:
                        state = self._bind_field(state, call.receiver, member, NullState.NON_NULL)
        return state

    # ----- diagnostics ------------------------------------------------------

    def _report(self, kind: DiagnosticKind, binding: str, message: str) -> None:
        if not self._reporting or self.collector is None:
            return
        block_id, idx, line, column = self._loc
        self.collector.emit(
            kind, binding, message,
            block_id=block_id, statement_index=idx, line=line, column=column,
        )


__all__ = ["StateTransformer", "Evaluation"]
