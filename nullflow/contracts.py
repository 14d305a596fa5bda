"""
nullflow/contracts.py
═════════════════════

Declarative nullability contracts: what a procedure promises about its
parameters, receiver fields and return value.

Contracts of *other* procedures are trusted at call sites
(:mod:`nullflow.transfer`).  Contracts of the procedure being analysed are
proved against its own body by :class:`ContractValidator`.

Public API
──────────
  Contract                     - common base of the variants below
  Precondition                 - ref parameter is NonNull after return
  PostconditionUnconditional   - target has a state after return
  PostconditionConditional     - target has a state when return == bool
  MemberPostcondition          - receiver fields NonNull after return
  Unreachability               - call does not return for a bool argument
  ReturnPostcondition          - state of the returned value
  ContractRegistry             - registration-time validation + lookup
  ContractValidator            - checks a procedure's exits
  contract_from_dict           - decode the JSON form
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

from nullflow.checkers import DiagnosticCollector, DiagnosticKind
from nullflow.errors import ContractError
from nullflow.ir import (
    Expr,
    Literal,
    NullabilityKind,
    Procedure,
    ProcedureSignature,
    Return,
)
from nullflow.lattice import NullState, StateMap

if TYPE_CHECKING:
    from nullflow.transfer import StateTransformer

logger = logging.getLogger(__name__)

RETURN_BINDING = "return"


# ═════════════════════════════════════════════════════════════════════════
#  CONTRACT VARIANTS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Contract:
    """Base class of all contract variants."""

    kind = "contract"

    def describe(self) -> str:
        return self.kind


@dataclass(frozen=True)
class Precondition(Contract):
    """*parameter* (passed by reference) is NonNull after a normal return.

    With ``requires_on_entry=True`` the caller must pass a NonNull argument
    and the body may assume it.
    """
    parameter: str
    requires_on_entry: bool = False

    kind = "precondition"

    def describe(self) -> str:
        if self.requires_on_entry:
            return f"{self.parameter} must be non-null on entry"
        return f"{self.parameter} is non-null on return"


@dataclass(frozen=True)
class PostconditionUnconditional(Contract):
    target: str
    state: NullState = NullState.NON_NULL

    kind = "postcondition"

    def describe(self) -> str:
        return f"{self.target} is {self.state} on return"


@dataclass(frozen=True)
class PostconditionConditional(Contract):
    target: str
    when_return: bool
    state: NullState = NullState.NON_NULL

    kind = "postcondition-conditional"

    def describe(self) -> str:
        ret = "true" if self.when_return else "false"
        return f"{self.target} is {self.state} when returning {ret}"


@dataclass(frozen=True)
class MemberPostcondition(Contract):
    members: Tuple[str, ...]
    when_return: Optional[bool] = None

    kind = "member-postcondition"

    def describe(self) -> str:
        names = ", ".join(self.members)
        if self.when_return is None:
            return f"members {names} are non-null on return"
        ret = "true" if self.when_return else "false"
        return f"members {names} are non-null when returning {ret}"


@dataclass(frozen=True)
class Unreachability(Contract):
    """The call does not return when *parameter* equals *when_value*.

    ``parameter=None`` marks a procedure that never returns normally.
    """
    parameter: Optional[str] = None
    when_value: bool = True

    kind = "unreachability"

    def describe(self) -> str:
        if self.parameter is None:
            return "does not return"
        val = "true" if self.when_value else "false"
        return f"does not return when {self.parameter} is {val}"


@dataclass(frozen=True)
class ReturnPostcondition(Contract):
    """The returned value has *state*; NonNull whenever *if_not_null* is."""
    state: NullState = NullState.NON_NULL
    if_not_null: Optional[str] = None

    kind = "return"

    def describe(self) -> str:
        if self.if_not_null:
            return f"return is non-null if {self.if_not_null} is non-null"
        return f"return is {self.state}"


ContractLike = Union[
    Precondition,
    PostconditionUnconditional,
    PostconditionConditional,
    MemberPostcondition,
    Unreachability,
    ReturnPostcondition,
]


# ═════════════════════════════════════════════════════════════════════════
#  JSON DECODING
# ═════════════════════════════════════════════════════════════════════════

def _state(text: Any, default: NullState) -> NullState:
    if text is None:
        return default
    key = str(text).replace("-", "").replace("_", "").lower()
    for member in NullState:
        if member.value.lower() == key:
            return member
    raise ValueError(f"unknown null state: {text!r}")


def contract_from_dict(data: Mapping[str, Any]) -> Contract:
    """Decode one contract object of the input format.

    Raises
    ------
    ValueError
        If the ``kind`` is unknown or a required key is missing.
    """
    kind = data.get("kind")
    try:
        if kind == "precondition":
            return Precondition(
                parameter=data["parameter"],
                requires_on_entry=bool(data.get("requiresOnEntry", False)),
            )
        if kind == "postcondition":
            return PostconditionUnconditional(
                target=data["target"],
                state=_state(data.get("state"), NullState.NON_NULL),
            )
        if kind == "postcondition-conditional":
            return PostconditionConditional(
                target=data["target"],
                when_return=bool(data["whenReturn"]),
                state=_state(data.get("state"), NullState.NON_NULL),
            )
        if kind == "member-postcondition":
            when = data.get("whenReturn")
            return MemberPostcondition(
                members=tuple(data["members"]),
                when_return=None if when is None else bool(when),
            )
        if kind == "unreachability":
            return Unreachability(
                parameter=data.get("parameter"),
                when_value=bool(data.get("whenValue", True)),
            )
        if kind == "return":
            return ReturnPostcondition(
                state=_state(data.get("state"), NullState.NON_NULL),
                if_not_null=data.get("ifNotNull"),
            )
    except KeyError as exc:
        raise ValueError(f"{kind} contract is missing {exc.args[0]!r}") from None
    raise ValueError(f"unknown contract kind: {kind!r}")


# ═════════════════════════════════════════════════════════════════════════
#  REGISTRY
# ═════════════════════════════════════════════════════════════════════════

class ContractRegistry:
    """
    Signatures and validated contracts of every known procedure.

    Registration checks each declared contract against its signature.  A
    malformed contract is dropped and reported as a :class:`ContractError`;
    the remaining contracts of the signature stay in force.

    The registry is filled before analysis starts and only read afterwards,
    so workers share it without copying.
    """

    def __init__(self) -> None:
        self._signatures: Dict[str, ProcedureSignature] = {}
        self._contracts: Dict[str, Tuple[Contract, ...]] = {}
        self._errors: Dict[str, List[ContractError]] = {}
        self._lock = threading.Lock()

    def __contains__(self, name: str) -> bool:
        return name in self._signatures

    def __len__(self) -> int:
        return len(self._signatures)

    def register(self, signature: ProcedureSignature) -> List[ContractError]:
        """Validate and store *signature*; return the rejected contracts."""
        valid: List[Contract] = []
        errors: List[ContractError] = []
        for contract in signature.contracts:
            try:
                self._check(signature, contract)
            except ContractError as exc:
                logger.info("ignoring contract: %s", exc)
                errors.append(exc)
                continue
            if contract not in valid:
                valid.append(contract)
        with self._lock:
            self._signatures[signature.name] = signature
            self._contracts[signature.name] = tuple(valid)
            self._errors[signature.name] = errors
        return list(errors)

    def signature(self, name: str) -> Optional[ProcedureSignature]:
        return self._signatures.get(name)

    def resolve_contracts(
        self, signature: Union[ProcedureSignature, str]
    ) -> Tuple[Contract, ...]:
        """Valid contracts of a procedure in declaration order (no duplicates)."""
        name = signature if isinstance(signature, str) else signature.name
        return self._contracts.get(name, ())

    def errors(self, name: str) -> List[ContractError]:
        return list(self._errors.get(name, ()))

    # ----- registration-time checks ----------------------------------------

    def _check(self, sig: ProcedureSignature, contract: Any) -> None:
        def fail(reason: str) -> None:
            raise ContractError(sig.name, reason, contract)

        def target_exists(name: str) -> bool:
            return sig.parameter(name) is not None or sig.field(name) is not None

        if isinstance(contract, Precondition):
            param = sig.parameter(contract.parameter)
            if param is None:
                fail(f"precondition names unknown parameter '{contract.parameter}'")
            elif not contract.requires_on_entry and not param.is_ref:
                fail(f"precondition on '{contract.parameter}' requires a ref parameter")
        elif isinstance(contract, PostconditionUnconditional):
            if not target_exists(contract.target):
                fail(f"postcondition names unknown target '{contract.target}'")
            if contract.state is NullState.NULL:
                fail("unconditional postcondition state must be NonNull or MaybeNull")
        elif isinstance(contract, PostconditionConditional):
            if not sig.returns_boolean:
                fail(
                    f"conditional postcondition on '{contract.target}' requires a "
                    f"boolean return type, not '{sig.return_type}'"
                )
            if not target_exists(contract.target):
                fail(f"conditional postcondition names unknown target '{contract.target}'")
            if contract.state is NullState.MAYBE_NULL:
                fail("conditional postcondition state must be NonNull or Null")
        elif isinstance(contract, MemberPostcondition):
            if not contract.members:
                fail("member postcondition names no members")
            for member in contract.members:
                if sig.field(member) is None:
                    fail(f"member postcondition names unknown field '{member}'")
            if contract.when_return is not None and not sig.returns_boolean:
                fail(
                    f"conditional member postcondition requires a boolean return "
                    f"type, not '{sig.return_type}'"
                )
        elif isinstance(contract, Unreachability):
            if contract.parameter is not None:
                param = sig.parameter(contract.parameter)
                if param is None:
                    fail(f"unreachability names unknown parameter '{contract.parameter}'")
                elif not param.is_boolean:
                    fail(f"unreachability parameter '{contract.parameter}' is not boolean")
        elif isinstance(contract, ReturnPostcondition):
            if not sig.returns_value:
                fail("return postcondition on a procedure without a return value")
            if contract.state is NullState.NULL:
                fail("return postcondition state must be NonNull or MaybeNull")
            if contract.if_not_null is not None and sig.parameter(contract.if_not_null) is None:
                fail(f"return postcondition names unknown parameter '{contract.if_not_null}'")
        else:
            fail(f"unsupported contract {contract!r}")


# ═════════════════════════════════════════════════════════════════════════
#  VALIDATOR
# ═════════════════════════════════════════════════════════════════════════

class ContractValidator:
    """
    Checks the postconditions of the procedure under analysis at each exit.

    Parameters
    ----------
    procedure : Procedure
    contracts : tuple of Contract
        The procedure's own valid contracts.
    transformer : StateTransformer
        Supplies declared-default lookup and condition refinement.
    collector : DiagnosticCollector
    """

    def __init__(
        self,
        procedure: Procedure,
        contracts: Tuple[Contract, ...],
        transformer: StateTransformer,
        collector: DiagnosticCollector,
    ) -> None:
        self.procedure = procedure
        self.contracts = contracts
        self.transformer = transformer
        self.collector = collector

    def check_exit(
        self,
        state: StateMap,
        terminator: Optional[Return],
        block_id: int,
        statement_index: int,
    ) -> None:
        """Validate all postconditions against the terminal *state* of one exit."""
        value = terminator.value if terminator is not None else None
        line = terminator.line if terminator is not None else 0
        column = terminator.column if terminator is not None else 0

        def report(kind: DiagnosticKind, binding: str, message: str) -> None:
            self.collector.emit(
                kind, binding, message,
                block_id=block_id, statement_index=statement_index,
                line=line, column=column,
            )

        def expect(exit_state: StateMap, target: str, want: NullState, contract: Contract) -> None:
            have = self.transformer.lookup(exit_state, target)
            if have is not want:
                report(
                    DiagnosticKind.CONTRACT_INCONSISTENCY, target,
                    f"'{target}' may be {have} at this exit of "
                    f"{self.procedure.id}, but the contract says "
                    f"{contract.describe()}",
                )

        for contract in self.contracts:
            if isinstance(contract, Precondition):
                if not contract.requires_on_entry:
                    expect(state, contract.parameter, NullState.NON_NULL, contract)
            elif isinstance(contract, PostconditionUnconditional):
                if contract.state is NullState.NON_NULL:
                    expect(state, contract.target, NullState.NON_NULL, contract)
            elif isinstance(contract, PostconditionConditional):
                refined = self._when_returning(state, value, contract.when_return)
                if refined is not None:
                    expect(refined, contract.target, contract.state, contract)
            elif isinstance(contract, MemberPostcondition):
                if contract.when_return is None:
                    refined = state
                else:
                    refined = self._when_returning(state, value, contract.when_return)
                if refined is not None:
                    for member in contract.members:
                        expect(refined, member, NullState.NON_NULL, contract)
            elif isinstance(contract, Unreachability):
                if contract.parameter is None:
                    report(
                        DiagnosticKind.CONTRACT_INCONSISTENCY, "",
                        f"{self.procedure.id} is declared not to return, "
                        f"but this exit is reachable",
                    )
            elif isinstance(contract, ReturnPostcondition):
                self._check_return(state, value, contract, report)

        if self.procedure.signature.is_constructor:
            for fld in self.procedure.signature.fields:
                if fld.nullability is not NullabilityKind.NON_NULLABLE:
                    continue
                have = self.transformer.lookup(state, fld.name)
                if have is not NullState.NON_NULL:
                    report(
                        DiagnosticKind.UNINITIALIZED_NON_NULLABLE_MEMBER, fld.name,
                        f"non-nullable field '{fld.name}' may be {have} when "
                        f"the constructor {self.procedure.id} exits",
                    )

    def _when_returning(
        self, state: StateMap, value: Optional[Expr], outcome: bool
    ) -> Optional[StateMap]:
        """State at this exit restricted to runs returning *outcome*, or ``None``."""
        if value is None:
            return state
        if isinstance(value, Literal) and value.is_boolean:
            return state if value.value == outcome else None
        return self.transformer.refine(state, value, outcome)

    def _check_return(
        self,
        state: StateMap,
        value: Optional[Expr],
        contract: ReturnPostcondition,
        report: Callable[[DiagnosticKind, str, str], None],
    ) -> None:
        if value is None or contract.state is not NullState.NON_NULL:
            return
        if contract.if_not_null is not None:
            if self.transformer.lookup(state, contract.if_not_null) is not NullState.NON_NULL:
                return
        have = self.transformer.value_of(value, state)
        if have is not NullState.NON_NULL:
            report(
                DiagnosticKind.CONTRACT_INCONSISTENCY, RETURN_BINDING,
                f"returned value may be {have}, but the contract says "
                f"{contract.describe()}",
            )


__all__ = [
    "RETURN_BINDING",
    "Contract",
    "Precondition",
    "PostconditionUnconditional",
    "PostconditionConditional",
    "MemberPostcondition",
    "Unreachability",
    "ReturnPostcondition",
    "ContractRegistry",
    "ContractValidator",
    "contract_from_dict",
]
