# tests/test_lattice.py
"""
Tests for the null-state lattice and the immutable state map.
"""

import itertools

import pytest

from nullflow.lattice import (
    GuardOutcome,
    NullState,
    StateMap,
    StateMapLattice,
    join,
    leq,
    narrow,
)

NN = NullState.NON_NULL
N = NullState.NULL
MN = NullState.MAYBE_NULL


# ── join laws ────────────────────────────────────────────────────

class TestJoin:

    @pytest.mark.parametrize("a", list(NullState))
    def test_idempotent(self, a):
        assert join(a, a) is a

    @pytest.mark.parametrize("a,b", list(itertools.product(NullState, repeat=2)))
    def test_commutative(self, a, b):
        assert join(a, b) is join(b, a)

    @pytest.mark.parametrize("a,b,c", list(itertools.product(NullState, repeat=3)))
    def test_associative(self, a, b, c):
        assert join(join(a, b), c) is join(a, join(b, c))

    def test_different_states_give_maybe_null(self):
        assert join(NN, N) is MN
        assert join(N, MN) is MN
        assert join(NN, MN) is MN

    @pytest.mark.parametrize("a,b", list(itertools.product(NullState, repeat=2)))
    def test_join_is_upper_bound(self, a, b):
        j = join(a, b)
        assert leq(a, j) and leq(b, j)


# ── order ────────────────────────────────────────────────────────

class TestOrder:

    def test_maybe_null_is_top(self):
        for s in NullState:
            assert leq(s, MN)

    def test_definite_states_are_incomparable(self):
        assert not leq(NN, N)
        assert not leq(N, NN)
        assert not leq(MN, NN)

    def test_is_definite(self):
        assert NN.is_definite and N.is_definite
        assert not MN.is_definite

    def test_str_is_external_name(self):
        assert str(MN) == "MaybeNull"


# ── narrowing ────────────────────────────────────────────────────

class TestNarrow:

    @pytest.mark.parametrize("s", list(NullState))
    def test_non_null_outcome(self, s):
        assert narrow(s, GuardOutcome.NON_NULL) is NN

    @pytest.mark.parametrize("s", list(NullState))
    def test_null_outcome(self, s):
        assert narrow(s, GuardOutcome.NULL) is N

    @pytest.mark.parametrize("s", list(NullState))
    def test_unknown_outcome_is_identity(self, s):
        assert narrow(s, GuardOutcome.UNKNOWN) is s

    def test_negate(self):
        assert GuardOutcome.NON_NULL.negate() is GuardOutcome.NULL
        assert GuardOutcome.NULL.negate() is GuardOutcome.NON_NULL
        assert GuardOutcome.UNKNOWN.negate() is GuardOutcome.UNKNOWN


# ── StateMap ─────────────────────────────────────────────────────

class TestStateMap:

    def test_set_returns_copy(self):
        a = StateMap({"x": MN})
        b = a.set("x", NN)
        assert a["x"] is MN
        assert b["x"] is NN

    def test_pointwise_join(self):
        a = StateMap({"x": NN, "y": N})
        b = StateMap({"x": NN, "y": NN})
        j = a.join(b)
        assert j["x"] is NN
        assert j["y"] is MN

    def test_missing_path_joins_as_maybe_null(self):
        a = StateMap({"x": NN, "s.Name": NN})
        b = StateMap({"x": NN})
        assert a.join(b)["s.Name"] is MN
        assert b.join(a)["s.Name"] is MN

    def test_leq(self):
        low = StateMap({"x": NN})
        high = StateMap({"x": MN})
        assert low.leq(high)
        assert not high.leq(low)

    def test_equality_and_hash(self):
        a = StateMap({"x": NN, "y": N})
        b = StateMap({"y": N, "x": NN})
        assert a == b
        assert hash(a) == hash(b)

    def test_items_sorted(self):
        s = StateMap({"b": NN, "a": N})
        assert s.items_sorted() == (("a", N), ("b", NN))

    def test_repr_is_sorted(self):
        assert repr(StateMap({"b": NN, "a": N})) == "StateMap({a: Null, b: NonNull})"


class TestStateMapLattice:

    def setup_method(self):
        self.lat = StateMapLattice()

    def test_bottom_is_join_identity(self):
        s = StateMap({"x": N})
        assert self.lat.join(None, s) is s
        assert self.lat.join(s, None) is s
        assert self.lat.join(None, None) is None

    def test_bottom_below_everything(self):
        assert self.lat.leq(None, StateMap())
        assert not self.lat.leq(StateMap(), None)

    def test_eq_is_semantic(self):
        assert self.lat.eq(StateMap({"x": MN}), StateMap({"x": MN}))
        assert not self.lat.eq(StateMap({"x": NN}), StateMap({"x": MN}))

    def test_join_all(self):
        maps = [StateMap({"x": NN}), None, StateMap({"x": N})]
        assert self.lat.join_all(maps)["x"] is MN

    def test_missing_path_joins_as_declared_default(self):
        lat = StateMapLattice(lambda path: NN if path == "s.Name" else MN)
        a = StateMap({"x": NN, "s.Name": NN})
        b = StateMap({"x": NN})
        assert lat.join(a, b)["s.Name"] is NN
        assert lat.join(b, a)["s.Name"] is NN
        assert lat.leq(b, a) and lat.leq(a, b)
        assert lat.join(StateMap({"s.Name": N}), b)["s.Name"] is MN
