"""
nullflow.ir
===========

Normalized program representation consumed by the engine.

A front end (see :mod:`nullflow.frontend`) lowers source code into:

* **bindings** — declared storage locations with a nullability kind;
* **expressions** — the handful of shapes whose nullability matters;
* **statements** — assignment, expression evaluation, branch, return, throw;
* **signatures** — parameter/return declarations plus declared contracts.

Every guard syntax (``x is null``, ``x == null``, ``x is not null``,
``x != null``, ``x.HasValue``) is lowered to a single :class:`NullTest`
recording which state the tested path has when the test is true.

Member accesses are addressed by *access paths*: a binding name (``"s"``),
a field of the receiver (``"FirstName"``, written ``this.FirstName`` in
source) or a member of another binding (``"s.Name"``).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional, Tuple

from nullflow.lattice import NullState

if TYPE_CHECKING:
    from nullflow.ctrlflow_graph import CFG

THIS = "this"


class NullabilityKind(enum.Enum):
    """Declared nullability of a binding or member."""
    NON_NULLABLE = "non-nullable"
    NULLABLE = "nullable"
    UNCONSTRAINED = "unconstrained"   # generic T without a notnull constraint

    @classmethod
    def parse(cls, text: str) -> NullabilityKind:
        key = text.strip().lower().replace("_", "-")
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(f"unknown nullability kind: {text!r}")


class BindingKind(enum.Enum):
    LOCAL = "local"
    PARAMETER = "parameter"
    FIELD = "field"
    PROPERTY = "property"


@dataclass(frozen=True)
class Binding:
    """A named storage location declared in a procedure.

    ``depends_on`` lists the bindings a computed property reads; assigning
    one of them discards whatever a guard established about the property.
    """
    name: str
    kind: BindingKind
    nullability: NullabilityKind = NullabilityKind.NULLABLE
    type_name: str = ""
    depends_on: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Parameter:
    name: str
    nullability: NullabilityKind = NullabilityKind.NULLABLE
    type_name: str = ""
    is_ref: bool = False

    @property
    def is_boolean(self) -> bool:
        return self.type_name.lower() in ("bool", "boolean")


# ===========================================================================
# EXPRESSIONS
# ===========================================================================

class Expr:
    """Base class of normalized expressions."""

    def path(self) -> Optional[str]:
        """Access path denoted by this expression, if it is one."""
        return None

    def describe(self) -> str:
        return "<expr>"

    def children(self) -> Iterator[Expr]:
        return iter(())


@dataclass(frozen=True)
class NullLiteral(Expr):
    def describe(self) -> str:
        return "null"


@dataclass(frozen=True)
class Literal(Expr):
    """A non-null constant or allocation (``""``, ``42``, ``new T()``, ``true``)."""
    value: Any = None
    text: str = ""

    @property
    def is_boolean(self) -> bool:
        return isinstance(self.value, bool)

    def describe(self) -> str:
        if self.text:
            return self.text
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        return repr(self.value)


@dataclass(frozen=True)
class Read(Expr):
    name: str

    def path(self) -> Optional[str]:
        return None if self.name == THIS else self.name

    def describe(self) -> str:
        return self.name


@dataclass(frozen=True)
class MemberRead(Expr):
    """``receiver.member`` (or ``receiver?.member`` when *conditional*).

    *nullability* is the declared nullability of the member itself, used
    when nothing more precise is known about the resulting path.
    """
    receiver: Expr
    member: str
    nullability: NullabilityKind = NullabilityKind.NULLABLE
    conditional: bool = False

    def path(self) -> Optional[str]:
        if isinstance(self.receiver, Read) and self.receiver.name == THIS:
            return self.member
        base = self.receiver.path()
        if base is None:
            return None
        return f"{base}.{self.member}"

    def describe(self) -> str:
        op = "?." if self.conditional else "."
        if isinstance(self.receiver, Read) and self.receiver.name == THIS:
            return self.member
        return f"{self.receiver.describe()}{op}{self.member}"

    def children(self) -> Iterator[Expr]:
        yield self.receiver


@dataclass(frozen=True)
class Call(Expr):
    """Call of *callee*; ``receiver=None`` is a static call or a call on ``this``."""
    callee: str
    args: Tuple[Expr, ...] = ()
    receiver: Optional[Expr] = None

    def describe(self) -> str:
        prefix = f"{self.receiver.describe()}." if self.receiver is not None else ""
        inner = ", ".join(a.describe() for a in self.args)
        return f"{prefix}{self.callee}({inner})"

    def children(self) -> Iterator[Expr]:
        if self.receiver is not None:
            yield self.receiver
        yield from self.args


@dataclass(frozen=True)
class Forgive(Expr):
    """Null-forgiving ``operand!``."""
    operand: Expr

    def path(self) -> Optional[str]:
        return self.operand.path()

    def describe(self) -> str:
        return f"{self.operand.describe()}!"

    def children(self) -> Iterator[Expr]:
        yield self.operand


@dataclass(frozen=True)
class Coalesce(Expr):
    """``left ?? right``."""
    left: Expr
    right: Expr

    def describe(self) -> str:
        return f"{self.left.describe()} ?? {self.right.describe()}"

    def children(self) -> Iterator[Expr]:
        yield self.left
        yield self.right


@dataclass(frozen=True)
class ThrowExpr(Expr):
    """``throw`` in expression position; produces no value."""
    exception: str = ""

    def describe(self) -> str:
        return f"throw {self.exception}".rstrip()


@dataclass(frozen=True)
class NullTest(Expr):
    """Canonical guard: when true, *operand* has state *when_true*."""
    operand: Expr
    when_true: NullState = NullState.NON_NULL
    form: str = ""

    def describe(self) -> str:
        if self.form:
            if self.form == "HasValue":
                return f"{self.operand.describe()}.HasValue"
            return f"{self.operand.describe()} {self.form}"
        op = "is not null" if self.when_true is NullState.NON_NULL else "is null"
        return f"{self.operand.describe()} {op}"

    def children(self) -> Iterator[Expr]:
        yield self.operand


@dataclass(frozen=True)
class Not(Expr):
    operand: Expr

    def describe(self) -> str:
        return f"!({self.operand.describe()})"

    def children(self) -> Iterator[Expr]:
        yield self.operand


@dataclass(frozen=True)
class And(Expr):
    left: Expr
    right: Expr

    def describe(self) -> str:
        return f"{self.left.describe()} && {self.right.describe()}"

    def children(self) -> Iterator[Expr]:
        yield self.left
        yield self.right


@dataclass(frozen=True)
class Or(Expr):
    left: Expr
    right: Expr

    def describe(self) -> str:
        return f"{self.left.describe()} || {self.right.describe()}"

    def children(self) -> Iterator[Expr]:
        yield self.left
        yield self.right


# Guard spellings accepted by the front end, mapped to ``NullTest.when_true``.
GUARD_FORMS: Dict[str, NullState] = {
    "is null": NullState.NULL,
    "== null": NullState.NULL,
    "is not null": NullState.NON_NULL,
    "!= null": NullState.NON_NULL,
    "HasValue": NullState.NON_NULL,
}


def null_test(operand: Expr, form: str) -> NullTest:
    """Lower one of the :data:`GUARD_FORMS` spellings to a :class:`NullTest`."""
    try:
        when_true = GUARD_FORMS[form]
    except KeyError:
        raise ValueError(f"unknown guard form: {form!r}") from None
    return NullTest(operand=operand, when_true=when_true, form=form)


# ===========================================================================
# STATEMENTS
# ===========================================================================

@dataclass(frozen=True)
class Statement:
    """Base class; *line*/*column* point back into the source file."""
    line: int = field(default=0, kw_only=True)
    column: int = field(default=0, kw_only=True)

    def expressions(self) -> Iterator[Expr]:
        return iter(())


@dataclass(frozen=True)
class Assign(Statement):
    """``target = value``; *target* is an access path."""
    target: str
    value: Expr

    def expressions(self) -> Iterator[Expr]:
        yield self.value


@dataclass(frozen=True)
class Evaluate(Statement):
    """Expression statement (a dereference, a call, ...)."""
    expr: Expr

    def expressions(self) -> Iterator[Expr]:
        yield self.expr


@dataclass(frozen=True)
class Branch(Statement):
    """Block terminator: successors are the true and false edges."""
    condition: Expr

    def expressions(self) -> Iterator[Expr]:
        yield self.condition


@dataclass(frozen=True)
class Return(Statement):
    value: Optional[Expr] = None

    def expressions(self) -> Iterator[Expr]:
        if self.value is not None:
            yield self.value


@dataclass(frozen=True)
class Throw(Statement):
    exception: str = ""


# ===========================================================================
# SIGNATURES & PROCEDURES
# ===========================================================================

@dataclass(frozen=True)
class ProcedureSignature:
    """Declared interface of a procedure, including its contracts."""
    name: str
    parameters: Tuple[Parameter, ...] = ()
    return_type: str = "void"
    return_nullability: NullabilityKind = NullabilityKind.NON_NULLABLE
    contracts: Tuple[Any, ...] = ()
    fields: Tuple[Binding, ...] = ()
    is_constructor: bool = False

    @property
    def returns_boolean(self) -> bool:
        return self.return_type.lower() in ("bool", "boolean")

    @property
    def returns_value(self) -> bool:
        return self.return_type.lower() != "void"

    def parameter(self, name: str) -> Optional[Parameter]:
        for p in self.parameters:
            if p.name == name:
                return p
        return None

    def parameter_index(self, name: str) -> int:
        for idx, p in enumerate(self.parameters):
            if p.name == name:
                return idx
        return -1

    def field(self, name: str) -> Optional[Binding]:
        for f in self.fields:
            if f.name == name:
                return f
        return None


@dataclass
class Procedure:
    """One analysis unit: a signature, its bindings and its CFG."""
    signature: ProcedureSignature
    cfg: CFG
    locals: Tuple[Binding, ...] = ()
    properties: Tuple[Binding, ...] = ()
    file: str = ""
    line: int = 0

    @property
    def id(self) -> str:
        return self.signature.name

    def bindings(self) -> Dict[str, Binding]:
        """All declared bindings keyed by access path."""
        result: Dict[str, Binding] = {}
        for f in self.signature.fields:
            result[f.name] = f
        for p in self.properties:
            result[p.name] = p
        for p in self.signature.parameters:
            result[p.name] = Binding(
                name=p.name,
                kind=BindingKind.PARAMETER,
                nullability=p.nullability,
                type_name=p.type_name,
            )
        for loc in self.locals:
            result[loc.name] = loc
        return result


__all__ = [
    "THIS",
    "NullabilityKind",
    "BindingKind",
    "Binding",
    "Parameter",
    "Expr",
    "NullLiteral",
    "Literal",
    "Read",
    "MemberRead",
    "Call",
    "Forgive",
    "Coalesce",
    "ThrowExpr",
    "NullTest",
    "Not",
    "And",
    "Or",
    "GUARD_FORMS",
    "null_test",
    "Statement",
    "Assign",
    "Evaluate",
    "Branch",
    "Return",
    "Throw",
    "ProcedureSignature",
    "Procedure",
]
