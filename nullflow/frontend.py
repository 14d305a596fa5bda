"""
nullflow.frontend
=================

Input interface of the engine.

The engine does not parse source code.  A front end hands it procedures
as already-built CFGs, either as a JSON document (:func:`load_unit`) or
programmatically through :class:`ProcedureBuilder`.

JSON layout::

    {
      "unit": "Student.cs",
      "procedures": [
        {
          "id": "Student.SetEmptyIfNull",
          "file": "Student.cs", "line": 12,
          "parameters": [{"name": "text", "type": "string",
                          "nullability": "nullable", "ref": true}],
          "returns": {"type": "void"},
          "contracts": [{"kind": "precondition", "parameter": "text"}],
          "blocks": [
            {"id": 0,
             "statements": [{"op": "guard", "operand": "text", "form": "== null"}],
             "successors": [{"target": 1, "condition": "true"},
                            {"target": 2, "condition": "false"}]},
            {"id": 1,
             "statements": [{"op": "assign", "target": "text",
                             "value": {"kind": "literal", "value": ""}}],
             "successors": [{"target": 2}]},
            {"id": 2, "statements": [{"op": "return"}]}
          ]
        }
      ],
      "externs": [{"id": "Guard.Fail", "parameters": [...], "contracts": [...]}]
    }

Wherever an expression is expected, a plain string is shorthand for an
access path: ``"s"`` reads ``s``, ``"s.Name"`` dereferences ``s``, and
``"this.Name"`` reads the receiver's field ``Name``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from nullflow.contracts import Contract, contract_from_dict
from nullflow.ctrlflow_graph import CFG, EdgeKind
from nullflow.errors import FrontendError
from nullflow.ir import (
    THIS,
    And,
    Assign,
    Binding,
    BindingKind,
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
    Or,
    Parameter,
    Procedure,
    ProcedureSignature,
    Read,
    Return,
    Statement,
    Throw,
    ThrowExpr,
    null_test,
)

logger = logging.getLogger(__name__)


@dataclass
class Unit:
    """A compilation unit: analysed procedures plus extern signatures."""
    name: str = ""
    procedures: List[Procedure] = field(default_factory=list)
    externs: List[ProcedureSignature] = field(default_factory=list)

    def procedure(self, procedure_id: str) -> Procedure:
        for proc in self.procedures:
            if proc.id == procedure_id:
                return proc
        raise KeyError(procedure_id)


# ===========================================================================
# PROGRAMMATIC BUILDER
# ===========================================================================

class ProcedureBuilder:
    """Fluent construction of a :class:`Procedure`.

    Example::

        proc = (ProcedureBuilder("Demo.Scenario1")
                .parameter("x")
                .block(0, [Branch(null_test(Read("x"), "== null"))], true=1, false=2)
                .block(1, [Return()])
                .block(2, [Evaluate(MemberRead(Read("x"), "Member"))])
                .build())
    """

    def __init__(self, name: str, file: str = "", line: int = 0) -> None:
        self.name = name
        self.file = file
        self.line = line
        self._parameters: List[Parameter] = []
        self._return_type = "void"
        self._return_nullability = NullabilityKind.NON_NULLABLE
        self._contracts: List[Contract] = []
        self._fields: List[Binding] = []
        self._properties: List[Binding] = []
        self._locals: List[Binding] = []
        self._constructor = False
        self._blocks: List[Tuple[int, List[Statement], bool]] = []
        self._edges: List[Tuple[int, int, EdgeKind]] = []
        self._entry: Optional[int] = None

    def parameter(
        self,
        name: str,
        nullability: Union[NullabilityKind, str] = NullabilityKind.NULLABLE,
        type_name: str = "object",
        ref: bool = False,
    ) -> ProcedureBuilder:
        self._parameters.append(
            Parameter(name, _nullability(nullability), type_name, ref)
        )
        return self

    def returns(
        self,
        type_name: str,
        nullability: Union[NullabilityKind, str] = NullabilityKind.NON_NULLABLE,
    ) -> ProcedureBuilder:
        self._return_type = type_name
        self._return_nullability = _nullability(nullability)
        return self

    def contract(self, *contracts: Contract) -> ProcedureBuilder:
        self._contracts.extend(contracts)
        return self

    def field(
        self,
        name: str,
        nullability: Union[NullabilityKind, str] = NullabilityKind.NULLABLE,
        type_name: str = "object",
    ) -> ProcedureBuilder:
        self._fields.append(
            Binding(name, BindingKind.FIELD, _nullability(nullability), type_name)
        )
        return self

    def property(
        self,
        name: str,
        nullability: Union[NullabilityKind, str] = NullabilityKind.NULLABLE,
        depends_on: Sequence[str] = (),
        type_name: str = "object",
    ) -> ProcedureBuilder:
        self._properties.append(
            Binding(name, BindingKind.PROPERTY, _nullability(nullability),
                    type_name, tuple(depends_on))
        )
        return self

    def local(
        self,
        name: str,
        nullability: Union[NullabilityKind, str] = NullabilityKind.NULLABLE,
        type_name: str = "object",
    ) -> ProcedureBuilder:
        self._locals.append(
            Binding(name, BindingKind.LOCAL, _nullability(nullability), type_name)
        )
        return self

    def constructor(self, flag: bool = True) -> ProcedureBuilder:
        self._constructor = flag
        return self

    def block(
        self,
        block_id: int,
        statements: Sequence[Statement] = (),
        *,
        next: Optional[int] = None,
        true: Optional[int] = None,
        false: Optional[int] = None,
        entry: bool = False,
    ) -> ProcedureBuilder:
        """Add a block and its successor edges."""
        self._blocks.append((block_id, list(statements), entry))
        if next is not None:
            self._edges.append((block_id, next, EdgeKind.FALL_THROUGH))
        if true is not None:
            self._edges.append((block_id, true, EdgeKind.BRANCH_TRUE))
        if false is not None:
            self._edges.append((block_id, false, EdgeKind.BRANCH_FALSE))
        return self

    def edge(
        self, src: int, dst: int, kind: EdgeKind = EdgeKind.FALL_THROUGH
    ) -> ProcedureBuilder:
        self._edges.append((src, dst, kind))
        return self

    def entry(self, block_id: int) -> ProcedureBuilder:
        self._entry = block_id
        return self

    def signature(self) -> ProcedureSignature:
        return ProcedureSignature(
            name=self.name,
            parameters=tuple(self._parameters),
            return_type=self._return_type,
            return_nullability=self._return_nullability,
            contracts=tuple(self._contracts),
            fields=tuple(self._fields),
            is_constructor=self._constructor,
        )

    def build(self) -> Procedure:
        cfg = CFG(self.name)
        for block_id, statements, is_entry in self._blocks:
            cfg.add_block(block_id, statements, entry=is_entry)
        if self._entry is not None:
            cfg.set_entry(self._entry)
        for src, dst, kind in self._edges:
            cfg.connect(src, dst, kind)
        cfg.finalize()
        return Procedure(
            signature=self.signature(),
            cfg=cfg,
            locals=tuple(self._locals),
            properties=tuple(self._properties),
            file=self.file,
            line=self.line,
        )


# ===========================================================================
# JSON DECODING
# ===========================================================================

def _nullability(value: Union[NullabilityKind, str, None]) -> NullabilityKind:
    if isinstance(value, NullabilityKind):
        return value
    if value is None:
        return NullabilityKind.NULLABLE
    return NullabilityKind.parse(value)


def path_expr(path: str) -> Expr:
    """``"s.Name"`` → ``MemberRead(Read("s"), "Name")``; ``"this.F"`` → field read."""
    parts = path.split(".")
    expr: Expr = Read(parts[0])
    for member in parts[1:]:
        expr = MemberRead(expr, member)
    return expr


def _target_path(target: str) -> str:
    prefix = THIS + "."
    return target[len(prefix):] if target.startswith(prefix) else target


class _Decoder:
    """Stateful decoder that reports the position of malformed nodes."""

    def __init__(self, source: str) -> None:
        self.source = source
        self.where = ""

    def fail(self, message: str) -> FrontendError:
        loc = f"{self.where}: " if self.where else ""
        return FrontendError(f"{loc}{message}", self.source)

    def require(self, data: Mapping[str, Any], key: str) -> Any:
        if not isinstance(data, Mapping):
            raise self.fail(f"expected an object, got {type(data).__name__}")
        if key not in data:
            raise self.fail(f"missing key {key!r}")
        return data[key]

    def integer(self, data: Mapping[str, Any], key: str) -> int:
        """Optional integer field (``line``, ``column``), ``0`` when absent."""
        value = data.get(key, 0)
        if isinstance(value, bool) or not isinstance(value, int):
            raise self.fail(f"{key} must be an integer, got {value!r}")
        return value

    # ----- expressions ------------------------------------------------------

    def expr(self, data: Any) -> Expr:
        if isinstance(data, str):
            return path_expr(data)
        kind = self.require(data, "kind")
        try:
            if kind == "null":
                return NullLiteral()
            if kind == "literal":
                return Literal(data.get("value"), str(data.get("text", "")))
            if kind == "read":
                return Read(data["name"])
            if kind == "member":
                return MemberRead(
                    self.expr(data["receiver"]),
                    data["member"],
                    _nullability(data.get("nullability")),
                    bool(data.get("conditional", False)),
                )
            if kind == "call":
                receiver = data.get("receiver")
                return Call(
                    data["callee"],
                    tuple(self.expr(a) for a in data.get("args", [])),
                    None if receiver is None else self.expr(receiver),
                )
            if kind == "forgive":
                return Forgive(self.expr(data["operand"]))
            if kind == "coalesce":
                return Coalesce(self.expr(data["left"]), self.expr(data["right"]))
            if kind == "throw":
                return ThrowExpr(str(data.get("exception", "")))
            if kind == "test":
                return null_test(self.expr(data["operand"]), data["form"])
            if kind == "not":
                return Not(self.expr(data["operand"]))
            if kind == "and":
                return And(self.expr(data["left"]), self.expr(data["right"]))
            if kind == "or":
                return Or(self.expr(data["left"]), self.expr(data["right"]))
        except KeyError as exc:
            raise self.fail(f"{kind} expression is missing {exc.args[0]!r}") from None
        except ValueError as exc:
            raise self.fail(str(exc)) from None
        raise self.fail(f"unknown expression kind {kind!r}")

    # ----- statements -------------------------------------------------------

    def statement(self, data: Any) -> Statement:
        op = self.require(data, "op")
        pos = {"line": self.integer(data, "line"), "column": self.integer(data, "column")}
        try:
            if op == "assign":
                return Assign(_target_path(data["target"]), self.expr(data["value"]), **pos)
            if op == "eval":
                return Evaluate(self.expr(data["expr"]), **pos)
            if op == "deref":
                return Evaluate(
                    MemberRead(self.expr(data["target"]), data.get("member", "")), **pos
                )
            if op == "guard":
                return Branch(null_test(self.expr(data["operand"]), data["form"]), **pos)
            if op == "branch":
                return Branch(self.expr(data["condition"]), **pos)
            if op == "return":
                value = data.get("value")
                return Return(None if value is None else self.expr(value), **pos)
            if op == "throw":
                return Throw(str(data.get("exception", "")), **pos)
        except KeyError as exc:
            raise self.fail(f"{op} statement is missing {exc.args[0]!r}") from None
        except ValueError as exc:
            raise self.fail(str(exc)) from None
        raise self.fail(f"unknown statement op {op!r}")

    # ----- declarations -----------------------------------------------------

    def bindings(self, items: Sequence[Any], kind: BindingKind) -> Tuple[Binding, ...]:
        out: List[Binding] = []
        for item in items:
            try:
                out.append(Binding(
                    name=self.require(item, "name"),
                    kind=kind,
                    nullability=_nullability(item.get("nullability")),
                    type_name=str(item.get("type", "")),
                    depends_on=tuple(item.get("dependsOn", ())),
                ))
            except ValueError as exc:
                raise self.fail(str(exc)) from None
        return tuple(out)

    def signature(self, data: Mapping[str, Any]) -> ProcedureSignature:
        name = self.require(data, "id")
        params: List[Parameter] = []
        for item in data.get("parameters", []):
            try:
                params.append(Parameter(
                    name=self.require(item, "name"),
                    nullability=_nullability(item.get("nullability")),
                    type_name=str(item.get("type", "")),
                    is_ref=bool(item.get("ref", False)),
                ))
            except ValueError as exc:
                raise self.fail(str(exc)) from None
        returns = data.get("returns") or {}
        contracts: List[Contract] = []
        for item in data.get("contracts", []):
            try:
                contracts.append(contract_from_dict(item))
            except ValueError as exc:
                raise self.fail(str(exc)) from None
        try:
            return_nullability = _nullability(returns.get("nullability", "non-nullable"))
        except ValueError as exc:
            raise self.fail(str(exc)) from None
        return ProcedureSignature(
            name=name,
            parameters=tuple(params),
            return_type=str(returns.get("type", "void")),
            return_nullability=return_nullability,
            contracts=tuple(contracts),
            fields=self.bindings(data.get("fields", []), BindingKind.FIELD),
            is_constructor=bool(data.get("constructor", False)),
        )

    def procedure(self, data: Mapping[str, Any], default_file: str) -> Procedure:
        sig = self.signature(data)
        self.where = sig.name
        cfg = CFG(sig.name)
        blocks = self.require(data, "blocks")
        for block in blocks:
            block_id = self.require(block, "id")
            if isinstance(block_id, bool) or not isinstance(block_id, int):
                raise self.fail(f"block id must be an integer, got {block_id!r}")
            self.where = f"{sig.name} block {block_id}"
            statements = [self.statement(s) for s in block.get("statements", [])]
            cfg.add_block(block_id, statements)
            for succ in block.get("successors", []):
                target = self.require(succ, "target")
                try:
                    kind = EdgeKind.from_condition(succ.get("condition"))
                except ValueError as exc:
                    raise self.fail(str(exc)) from None
                cfg.connect(block_id, target, kind)
        self.where = sig.name
        if "entry" in data:
            cfg.set_entry(data["entry"])
        cfg.finalize()
        return Procedure(
            signature=sig,
            cfg=cfg,
            locals=self.bindings(data.get("locals", []), BindingKind.LOCAL),
            properties=self.bindings(data.get("properties", []), BindingKind.PROPERTY),
            file=str(data.get("file", default_file)),
            line=self.integer(data, "line"),
        )


def unit_from_dict(data: Mapping[str, Any], source: str = "") -> Unit:
    """Decode an already-parsed input document."""
    decoder = _Decoder(source)
    if not isinstance(data, Mapping):
        raise decoder.fail("top level must be a JSON object")
    name = str(data.get("unit", source))
    unit = Unit(name=name)
    for item in data.get("procedures", []):
        decoder.where = ""
        unit.procedures.append(decoder.procedure(item, name))
    for item in data.get("externs", []):
        decoder.where = "extern"
        unit.externs.append(decoder.signature(item))
    logger.info(
        "loaded unit %r: %d procedures, %d externs",
        name, len(unit.procedures), len(unit.externs),
    )
    return unit


def loads_unit(text: str, source: str = "<string>") -> Unit:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise FrontendError(f"invalid JSON: {exc}", source) from exc
    return unit_from_dict(data, source)


def load_unit(path: Union[str, Path]) -> Unit:
    """Read and decode a JSON input document.

    Raises
    ------
    FrontendError
        If the file cannot be read or is not a valid input document.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise FrontendError(f"cannot read input: {exc}", str(path)) from exc
    return loads_unit(text, str(path))


__all__ = [
    "Unit",
    "ProcedureBuilder",
    "path_expr",
    "unit_from_dict",
    "loads_unit",
    "load_unit",
]
