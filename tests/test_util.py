"""
Test the util package
"""
import numpy as np
import pytest

from optexpr import util


@pytest.mark.parametrize(
    "inp, out",
    [
        (1, [1]),
        ("abc", ["abc"]),
        (1.2, [1.2]),
        ([1, 2], [1, 2]),
        (["abc", "def"], ["abc", "def"]),
        ((1,), [1]),
    ],
)
def test_toList(inp, out):
    assert util.toList(inp) == out


@pytest.mark.parametrize(
    "inp, size, out",
    [
        (1, -1, [1.0]),
        (1.5, 1, [1.5]),
        ([1, 2], 2, [1.0, 2.0]),
        ([[1, 2], [3, 4]], 4, [1.0, 2.0, 3.0, 4.0]),
    ],
)
def test_toVector(inp, size, out):
    vec = util.toVector(inp, size)
    assert vec.dtype == np.double
    assert vec.ndim == 1
    np.testing.assert_array_equal(vec, out)


def test_toVector_copies():
    arr = np.array([1.0, 2.0])
    vec = util.toVector(arr)
    vec[0] = 5.0
    assert arr[0] == 1.0


@pytest.mark.parametrize("inp, size", [([1, 2], 3), (1.0, 2), ([], 1)])
def test_toVector_wrongSize(inp, size):
    with pytest.raises(ValueError):
        util.toVector(inp, size)


def test_repr():
    class Thing:
        a = 1
        b = "x"

    out = util.repr(Thing(), "a", "b")
    assert out.startswith("<Thing:")
    assert "a = 1" in out
    assert "b = 'x'" in out


class TestOrderedSet:
    def test_order(self):
        items = util.OrderedSet([3, 1, 2, 1, 3])
        assert list(items) == [3, 1, 2]
        assert len(items) == 3

    def test_addDiscard(self):
        items = util.OrderedSet()
        items.add("b")
        items.add("a")
        items.add("b")
        assert list(items) == ["b", "a"]

        items.discard("b")
        items.discard("missing")
        assert list(items) == ["a"]
        assert "a" in items
        assert "b" not in items

    def test_identity(self):
        class Node:
            pass

        n1, n2 = Node(), Node()
        items = util.OrderedSet([n2, n1, n2])
        assert list(items) == [n2, n1]
