# tests/test_lattice.py
"""
Lattice laws and concrete behaviour of the shipped taint lattices.
"""

import pytest
from hypothesis import given, strategies as st

from taintvm.lattice import (
    LATTICES,
    BooleanLattice,
    SourceSetLattice,
    TaintLattice,
    join_all,
    make_lattice,
)

BOOL = BooleanLattice()
LABELS = SourceSetLattice()

bools = st.booleans()
label_sets = st.frozensets(st.sampled_from(["a", "b", "c", "userInput", "cookie"]))


class TestBooleanLatticeLaws:

    @given(bools, bools)
    def test_commutative(self, a, b):
        assert BOOL.join(a, b) == BOOL.join(b, a)

    @given(bools, bools, bools)
    def test_associative(self, a, b, c):
        assert BOOL.join(BOOL.join(a, b), c) == BOOL.join(a, BOOL.join(b, c))

    @given(bools)
    def test_idempotent(self, a):
        assert BOOL.join(a, a) == a

    @given(bools)
    def test_untainted_is_identity(self, a):
        assert BOOL.join(a, BOOL.untainted()) == a


class TestSourceSetLatticeLaws:

    @given(label_sets, label_sets)
    def test_commutative(self, a, b):
        assert LABELS.join(a, b) == LABELS.join(b, a)

    @given(label_sets, label_sets, label_sets)
    def test_associative(self, a, b, c):
        assert LABELS.join(LABELS.join(a, b), c) == LABELS.join(a, LABELS.join(b, c))

    @given(label_sets)
    def test_idempotent(self, a):
        assert LABELS.join(a, a) == a

    @given(label_sets)
    def test_untainted_is_identity(self, a):
        assert LABELS.join(a, LABELS.untainted()) == a
        assert LABELS.join(LABELS.untainted(), a) == a


class TestLift:

    def test_boolean_lift(self):
        assert BOOL.lift(["x"]) is True
        assert BOOL.lift([]) is False

    def test_label_lift(self):
        assert LABELS.lift(["x", "y"]) == frozenset({"x", "y"})
        assert LABELS.lift([]) == LABELS.untainted()

    def test_is_tainted(self):
        assert not BOOL.is_tainted(BOOL.untainted())
        assert BOOL.is_tainted(True)
        assert not LABELS.is_tainted(frozenset())
        assert LABELS.is_tainted(frozenset({"a"}))


class TestJoinAll:

    def test_empty_is_untainted(self):
        assert join_all(BOOL, []) is False
        assert join_all(LABELS, []) == frozenset()

    def test_unions_labels(self):
        values = [frozenset({"a"}), frozenset(), frozenset({"b", "a"})]
        assert join_all(LABELS, values) == frozenset({"a", "b"})


class TestRegistry:

    def test_names(self):
        assert set(LATTICES) == {"boolean", "labels"}

    @pytest.mark.parametrize("name", sorted(LATTICES))
    def test_make_lattice_satisfies_protocol(self, name):
        lattice = make_lattice(name)
        assert isinstance(lattice, TaintLattice)
        assert lattice.name == name

    def test_unknown_name(self):
        with pytest.raises(KeyError):
            make_lattice("provenance")
