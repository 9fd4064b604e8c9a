"""
Utilities
=========

Miscellaneous utility functions and containers.

.. autosummary::
   toList
   toVector
   repr
   OrderedSet

Reference
-----------

.. autofunction:: toList
.. autofunction:: toVector
.. autofunction:: repr
.. autoclass:: OrderedSet
   :members:
"""
from collections.abc import Iterable, Iterator
from typing import Generic, TypeVar

import numpy as np
from numpy.typing import NDArray

T = TypeVar("T")


def _iterate(val: object) -> Iterable:
    """
    A generator that iterates on the input, ``val``. If the input is a string,
    it is yielded without iterating.
    """
    if isinstance(val, str):
        yield val
    else:
        try:
            for item in val:  # type: ignore
                yield item
        except TypeError:
            yield val


def toList(val: object) -> list:
    """
    Convert an object to a list

    Args:
        val: the input

    Returns:
        a list containing the input

    Examples:
        >>> toList(1.23)
            [1.23]
        >>> toList((term1, term2))
            [term1, term2]
    """
    return list(_iterate(val))


def toVector(val: object, size: int = -1) -> NDArray[np.double]:
    """
    Convert an object to a flat vector of doubles

    Args:
        val: a scalar or array-like input
        size: the required number of elements; negative values skip the check

    Returns:
        a 1D float array that owns its data

    Raises:
        ValueError: if ``size`` is non-negative and does not match the number
            of elements in ``val``
    """
    vec = np.array(val, dtype=np.double, copy=True).ravel()
    if size >= 0 and not vec.size == size:
        raise ValueError(f"Expected {size} values, got {vec.size}")
    return vec


def repr(cls: object, *attributes: str) -> str:
    """
    Create a representation of a class

    .. code-block::

      <{cls.__class__.__name__}:
        attr1: repr(attr1),
        attr2: repr(attr2),
        ...
      >

    Args:
        cls: the object
        attributes: the names of the attributes to include in the repr

    Returns:
        The repr
    """
    out = f"<{cls.__class__.__name__}:"
    for attr in attributes:
        out += "\n  {!s} = {!r},".format(attr, getattr(cls, attr))
    out += "\n>"
    return out


class OrderedSet(Generic[T]):
    """
    A set that remembers insertion order

    Design variables are collected from expression graphs into one of these so
    that the column layout of stacked Jacobians is reproducible between runs.
    Membership is identity-based for objects that do not override ``__hash__``.
    """

    def __init__(self, items: Iterable[T] = ()) -> None:
        self._items: dict[T, None] = {}
        for item in items:
            self.add(item)

    def add(self, item: T) -> None:
        self._items[item] = None

    def discard(self, item: T) -> None:
        self._items.pop(item, None)

    def __contains__(self, item: object) -> bool:
        return item in self._items

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"OrderedSet({list(self._items)!r})"
