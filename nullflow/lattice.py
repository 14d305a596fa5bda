"""
nullflow.lattice
================

The three-valued null-state domain and the per-program-point state map.

::

            MaybeNull            (⊤, conservative)
           /         \\
       NonNull       Null
           \\         /
             (unreached)         (⊥, only at the dataflow layer)

``join`` is the least upper bound of the diagram: equal states stay, any two
different states give ``MaybeNull``.  It is commutative, associative and
idempotent.  ``narrow`` applies the observed outcome of a runtime null test.

Public API
----------
    NullState        - the closed three-valued enum
    GuardOutcome     - what a guard proved along one edge
    join, leq, narrow
    StateMap         - immutable access path → NullState mapping
    StateMapLattice  - dataflow lattice over ``Optional[StateMap]``
"""

from __future__ import annotations

import enum
from typing import Callable, Dict, Iterator, Mapping, Optional, Tuple

from nullflow.dataflow_engine import Lattice


class NullState(enum.Enum):
    """Nullability of a binding at one program point."""
    NON_NULL = "NonNull"
    NULL = "Null"
    MAYBE_NULL = "MaybeNull"

    @property
    def is_definite(self) -> bool:
        return self is not NullState.MAYBE_NULL

    def __str__(self) -> str:
        return self.value


class GuardOutcome(enum.Enum):
    """Fact established by a guard along one outgoing edge."""
    NON_NULL = "non-null"
    NULL = "null"
    UNKNOWN = "unknown"

    def negate(self) -> GuardOutcome:
        if self is GuardOutcome.NON_NULL:
            return GuardOutcome.NULL
        if self is GuardOutcome.NULL:
            return GuardOutcome.NON_NULL
        return GuardOutcome.UNKNOWN


def join(a: NullState, b: NullState) -> NullState:
    """Least upper bound of two null states."""
    if a is b:
        return a
    return NullState.MAYBE_NULL


def leq(a: NullState, b: NullState) -> bool:
    """``a ⊑ b`` in the null-state order."""
    return a is b or b is NullState.MAYBE_NULL


def narrow(state: NullState, outcome: GuardOutcome) -> NullState:
    """Apply a guard outcome to *state*.

    A successful ``is not null`` test proves ``NonNull`` and a successful
    ``is null`` test proves ``Null`` whatever was known before; an
    ``UNKNOWN`` outcome leaves the state untouched.
    """
    if outcome is GuardOutcome.NON_NULL:
        return NullState.NON_NULL
    if outcome is GuardOutcome.NULL:
        return NullState.NULL
    return state


# ===========================================================================
# STATE MAP
# ===========================================================================

# declared state of an access path that a state map does not bind
PathDefault = Callable[[str], NullState]


def _maybe_null(path: str) -> NullState:
    return NullState.MAYBE_NULL


class StateMap(Mapping[str, NullState]):
    """Immutable mapping from access path to :class:`NullState`.

    Paths absent from the map hold their declared state; :meth:`join`
    takes that state from a :data:`PathDefault` callback.
    """

    __slots__ = ("_states", "_hash")

    def __init__(self, states: Optional[Mapping[str, NullState]] = None) -> None:
        self._states: Dict[str, NullState] = dict(states or {})
        self._hash: Optional[int] = None

    def __getitem__(self, path: str) -> NullState:
        return self._states[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._states)

    def __len__(self) -> int:
        return len(self._states)

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(frozenset(self._states.items()))
        return self._hash

    def __eq__(self, other) -> bool:
        if isinstance(other, StateMap):
            return self._states == other._states
        return NotImplemented

    def __repr__(self) -> str:
        body = ", ".join(f"{k}: {v.value}" for k, v in sorted(self._states.items()))
        return f"StateMap({{{body}}})"

    def set(self, path: str, state: NullState) -> StateMap:
        """Return a copy with *path* bound to *state*."""
        states = dict(self._states)
        states[path] = state
        return StateMap(states)

    def to_dict(self) -> Dict[str, NullState]:
        return dict(self._states)

    def join(self, other: StateMap, default: Optional[PathDefault] = None) -> StateMap:
        """Pointwise join.

        A path missing on one side joins as ``default(path)``, its declared
        state; without *default* it joins as ``MaybeNull``.
        """
        fallback = default or _maybe_null
        result: Dict[str, NullState] = {}
        for path in self._states.keys() | other._states.keys():
            a = self._states[path] if path in self._states else fallback(path)
            b = other._states[path] if path in other._states else fallback(path)
            result[path] = join(a, b)
        return StateMap(result)

    def leq(self, other: StateMap, default: Optional[PathDefault] = None) -> bool:
        fallback = default or _maybe_null
        for path in self._states.keys() | other._states.keys():
            a = self._states[path] if path in self._states else fallback(path)
            b = other._states[path] if path in other._states else fallback(path)
            if not leq(a, b):
                return False
        return True

    def items_sorted(self) -> Tuple[Tuple[str, NullState], ...]:
        return tuple(sorted(self._states.items()))


class StateMapLattice(Lattice[Optional[StateMap]]):
    """Lattice of state maps with ``None`` as the unreached bottom.

    *default* gives the declared state of a path that is missing from one
    side of a join (see :meth:`StateMap.join`).
    """

    def __init__(self, default: Optional[PathDefault] = None) -> None:
        self.default = default

    def bottom(self) -> Optional[StateMap]:
        return None

    def join(self, a: Optional[StateMap], b: Optional[StateMap]) -> Optional[StateMap]:
        if a is None:
            return b
        if b is None:
            return a
        return a.join(b, self.default)

    def leq(self, a: Optional[StateMap], b: Optional[StateMap]) -> bool:
        if a is None:
            return True
        if b is None:
            return False
        return a.leq(b, self.default)

    def is_bottom(self, a: Optional[StateMap]) -> bool:
        return a is None


__all__ = [
    "NullState",
    "GuardOutcome",
    "join",
    "leq",
    "narrow",
    "StateMap",
    "StateMapLattice",
]
