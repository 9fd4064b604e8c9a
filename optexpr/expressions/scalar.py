"""
Scalar Expressions
==================

Expressions whose value is a single float. The tangent space is the real line,
so every local derivative is a scalar factor.

Scalar expressions support the usual arithmetic operators; plain numbers are
promoted to :class:`ScalarConstant` nodes:

.. code-block:: python

   x = Scalar(1.5, name="x")
   y = 2.0 * sin(x) - x / 3.0

.. autosummary::
   :nosignatures:

   ScalarExpression
   ScalarConstant
   NamedScalarConstant
   Scalar
   ScalarAdd
   ScalarMultiply
   ScalarDivide
   ScalarNegate
   ScalarUnaryOperation
   ScalarAtan2
   ScalarPower
   ScalarPiecewise

Elementary functions build :class:`ScalarUnaryOperation` nodes:

.. autosummary::

   sqrt
   log
   exp
   sin
   cos
   atan
   tanh
   acos
   acosSquared
   inverseSigmoid
   power
   piecewise
   atan2

Reference
-----------

.. autoclass:: ScalarExpression
   :members:

.. autoclass:: Scalar
   :members:
"""
from __future__ import annotations

import logging
from typing import Callable, Union

import numpy as np
from numpy.typing import NDArray

from optexpr import util
from optexpr.designvariables import DesignVariable
from optexpr.expressions import ConstantNode, ExpressionNode
from optexpr.jacobians import JacobianContainer
from optexpr.typing import override

logger = logging.getLogger(__name__)

__all__ = [
    "ScalarExpression",
    "ScalarConstant",
    "NamedScalarConstant",
    "Scalar",
    "ScalarAdd",
    "ScalarMultiply",
    "ScalarDivide",
    "ScalarNegate",
    "ScalarUnaryOperation",
    "ScalarAtan2",
    "ScalarPower",
    "ScalarPiecewise",
    "sqrt",
    "log",
    "exp",
    "sin",
    "cos",
    "atan",
    "tanh",
    "acos",
    "acosSquared",
    "inverseSigmoid",
    "power",
    "piecewise",
    "atan2",
]

ScalarLike = Union["ScalarExpression", float, int]


def toScalarExpression(val: ScalarLike) -> ScalarExpression:
    """
    Promote a number to a :class:`ScalarConstant`; expressions pass through

    Raises:
        TypeError: if ``val`` is neither a number nor a scalar expression
    """
    if isinstance(val, ScalarExpression):
        return val
    if isinstance(val, (int, float, np.number)):
        return ScalarConstant(float(val))
    raise TypeError(f"Cannot convert {type(val).__name__} to a scalar expression")


class ScalarExpression(ExpressionNode):
    """
    Base class for expressions with a scalar value
    """

    @property
    @override
    def tangentDimension(self) -> int:
        return 1

    def toScalar(self) -> float:
        """
        Evaluate the expression and return the value as a float
        """
        return float(self.evaluate())  # type: ignore[arg-type]

    # -------------------------------------------
    # Operators

    def __add__(self, other: ScalarLike) -> ScalarExpression:
        return ScalarAdd(self, toScalarExpression(other))

    def __radd__(self, other: ScalarLike) -> ScalarExpression:
        return ScalarAdd(toScalarExpression(other), self)

    def __sub__(self, other: ScalarLike) -> ScalarExpression:
        return ScalarAdd(self, toScalarExpression(other), multiplier=-1.0)

    def __rsub__(self, other: ScalarLike) -> ScalarExpression:
        return ScalarAdd(toScalarExpression(other), self, multiplier=-1.0)

    def __mul__(self, other):
        from optexpr.expressions.vector import VectorExpression

        if isinstance(other, VectorExpression):
            return other * self
        return ScalarMultiply(self, toScalarExpression(other))

    def __rmul__(self, other: ScalarLike) -> ScalarExpression:
        return ScalarMultiply(toScalarExpression(other), self)

    def __truediv__(self, other: ScalarLike) -> ScalarExpression:
        return ScalarDivide(self, toScalarExpression(other))

    def __rtruediv__(self, other: ScalarLike) -> ScalarExpression:
        return ScalarDivide(toScalarExpression(other), self)

    def __neg__(self) -> ScalarExpression:
        return ScalarNegate(self)


# ------------------------------------------------------------------------------
# Leaves


class ScalarConstant(ConstantNode, ScalarExpression):
    """
    A constant scalar
    """

    def __init__(self, value: float) -> None:
        super().__init__(float(value))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self._value}>"


class NamedScalarConstant(ConstantNode, ScalarExpression):
    """
    A named scalar constant whose value may be changed between evaluations

    Args:
        name: the name of the constant
        value: the initial value
    """

    def __init__(self, name: str, value: float) -> None:
        super().__init__(float(value))
        #: str: the name of the constant
        self.name = name

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self.name} = {self._value}>"

    @property
    def value(self) -> float:
        return self._value  # type: ignore[return-value]

    @value.setter
    def value(self, value: float) -> None:
        self._value = float(value)


class Scalar(DesignVariable, ScalarExpression):
    """
    A scalar design variable; updates are additive

    Args:
        value: the initial value
        name: an optional name
    """

    def __init__(self, value: float, name: str = "") -> None:
        DesignVariable.__init__(self, name)
        ScalarExpression.__init__(self)
        self._x = float(value)
        self._snapshot()

    @property
    @override
    def minimalDimensions(self) -> int:
        return 1

    @override
    def _getValue(self) -> float:
        return self._x

    @override
    def _setValue(self, value: object) -> None:
        self._x = float(np.asarray(value, dtype=np.double).ravel()[0])

    @override
    def _plus(self, dx: NDArray[np.double]) -> None:
        self._x += float(dx[0])

    @override
    def evaluate(self) -> float:
        self._value = self._x
        return self._x

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        jc.add(self)

    @override
    def getDesignVariables(self, designVariables: util.OrderedSet) -> None:
        designVariables.add(self)


# ------------------------------------------------------------------------------
# Operations


class ScalarAdd(ScalarExpression):
    """
    ``lhs + multiplier * rhs``; subtraction uses ``multiplier = -1``
    """

    def __init__(
        self, lhs: ScalarExpression, rhs: ScalarExpression, multiplier: float = 1.0
    ) -> None:
        super().__init__(lhs, rhs)
        self.multiplier = float(multiplier)

    def _evaluate(self, lhs, rhs):
        return lhs + self.multiplier * rhs

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        lhs, rhs = self._children
        lhs.evaluateJacobians(jc)
        rhs.evaluateJacobians(jc, self.multiplier)


class ScalarMultiply(ScalarExpression):
    """
    ``lhs * rhs``
    """

    def __init__(self, lhs: ScalarExpression, rhs: ScalarExpression) -> None:
        super().__init__(lhs, rhs)

    def _evaluate(self, lhs, rhs):
        return lhs * rhs

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        a, b = self._cached()
        self._children[0].evaluateJacobians(jc, b)
        self._children[1].evaluateJacobians(jc, a)


class ScalarDivide(ScalarExpression):
    """
    ``lhs / rhs``
    """

    def __init__(self, lhs: ScalarExpression, rhs: ScalarExpression) -> None:
        super().__init__(lhs, rhs)

    def _evaluate(self, lhs, rhs):
        return lhs / rhs

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        a, b = self._cached()
        self._children[0].evaluateJacobians(jc, 1.0 / b)
        self._children[1].evaluateJacobians(jc, -a / (b * b))


class ScalarNegate(ScalarExpression):
    def __init__(self, operand: ScalarExpression) -> None:
        super().__init__(operand)

    def _evaluate(self, value):
        return -value

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        self._children[0].evaluateJacobians(jc, -1.0)


class ScalarUnaryOperation(ScalarExpression):
    """
    Apply a differentiable function to a scalar expression

    Args:
        operand: the argument
        func: the function, ``f(x)``
        deriv: its derivative, ``f'(x)``
        name: a label used in printouts
    """

    def __init__(
        self,
        operand: ScalarExpression,
        func: Callable[[float], float],
        deriv: Callable[[float], float],
        name: str = "",
    ) -> None:
        super().__init__(operand)
        self._func = func
        self._deriv = deriv
        self.name = name

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self.name or self._func!r}>"

    def _evaluate(self, value):
        return float(self._func(value))

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        (value,) = self._cached()
        self._children[0].evaluateJacobians(jc, float(self._deriv(value)))


class ScalarAtan2(ScalarExpression):
    """
    ``atan2(y, x)``
    """

    def __init__(self, y: ScalarExpression, x: ScalarExpression) -> None:
        super().__init__(y, x)

    def _evaluate(self, y, x):
        return float(np.arctan2(y, x))

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        y, x = self._cached()
        r2 = x * x + y * y
        self._children[0].evaluateJacobians(jc, x / r2)
        self._children[1].evaluateJacobians(jc, -y / r2)


class ScalarPower(ScalarExpression):
    """
    ``operand ** k`` for an integer exponent
    """

    def __init__(self, operand: ScalarExpression, k: int) -> None:
        if not isinstance(k, (int, np.integer)):
            raise TypeError("The exponent must be an integer")
        super().__init__(operand)
        self.k = int(k)

    def _evaluate(self, value):
        return value**self.k

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        (value,) = self._cached()
        if self.k == 0:
            return
        self._children[0].evaluateJacobians(jc, self.k * value ** (self.k - 1))


class ScalarPiecewise(ScalarExpression):
    """
    Select one of two expressions at evaluation time

    Args:
        first: the expression used when ``useFirst()`` is True
        second: the expression used otherwise
        useFirst: a callable with no arguments, queried on every evaluation
    """

    def __init__(
        self,
        first: ScalarExpression,
        second: ScalarExpression,
        useFirst: Callable[[], bool],
    ) -> None:
        super().__init__(first, second)
        self._useFirst = useFirst
        self._firstActive = True

    @override
    def evaluate(self) -> float:
        self._firstActive = bool(self._useFirst())
        child = self._children[0] if self._firstActive else self._children[1]
        self._childValues = (child.evaluate(),)
        self._value = self._childValues[0]
        return self._value

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        self._cached()
        child = self._children[0] if self._firstActive else self._children[1]
        child.evaluateJacobians(jc)


# ------------------------------------------------------------------------------
# Elementary functions


def sqrt(e: ScalarLike) -> ScalarExpression:
    return ScalarUnaryOperation(
        toScalarExpression(e), np.sqrt, lambda x: 0.5 / np.sqrt(x), "sqrt"
    )


def log(e: ScalarLike) -> ScalarExpression:
    return ScalarUnaryOperation(toScalarExpression(e), np.log, lambda x: 1.0 / x, "log")


def exp(e: ScalarLike) -> ScalarExpression:
    return ScalarUnaryOperation(toScalarExpression(e), np.exp, np.exp, "exp")


def sin(e: ScalarLike) -> ScalarExpression:
    return ScalarUnaryOperation(toScalarExpression(e), np.sin, np.cos, "sin")


def cos(e: ScalarLike) -> ScalarExpression:
    return ScalarUnaryOperation(
        toScalarExpression(e), np.cos, lambda x: -np.sin(x), "cos"
    )


def atan(e: ScalarLike) -> ScalarExpression:
    return ScalarUnaryOperation(
        toScalarExpression(e), np.arctan, lambda x: 1.0 / (1.0 + x * x), "atan"
    )


def tanh(e: ScalarLike) -> ScalarExpression:
    return ScalarUnaryOperation(
        toScalarExpression(e), np.tanh, lambda x: 1.0 - np.tanh(x) ** 2, "tanh"
    )


def acos(e: ScalarLike) -> ScalarExpression:
    return ScalarUnaryOperation(
        toScalarExpression(e), np.arccos, lambda x: -1.0 / np.sqrt(1.0 - x * x), "acos"
    )


def acosSquared(e: ScalarLike) -> ScalarExpression:
    """
    ``acos(e)**2``, with a derivative that stays finite at ``e = 1``
    """

    def deriv(x):
        if x >= 1.0:
            # limit of -2 acos(x)/sqrt(1 - x^2) as x -> 1
            return -2.0
        return -2.0 * np.arccos(x) / np.sqrt(1.0 - x * x)

    return ScalarUnaryOperation(
        toScalarExpression(e), lambda x: np.arccos(x) ** 2, deriv, "acosSquared"
    )


def inverseSigmoid(
    e: ScalarLike, height: float = 1.0, scale: float = 1.0, shift: float = 0.0
) -> ScalarExpression:
    """
    A falling sigmoid, ``height / (1 + exp(scale * (e - shift)))``

    Args:
        e: the argument
        height: the value as ``e`` goes to negative infinity
        scale: the steepness of the transition
        shift: the location of the midpoint
    """

    def func(x):
        return height / (1.0 + np.exp(scale * (x - shift)))

    def deriv(x):
        ex = np.exp(scale * (x - shift))
        return -height * scale * ex / (1.0 + ex) ** 2

    return ScalarUnaryOperation(toScalarExpression(e), func, deriv, "inverseSigmoid")


def power(e: ScalarLike, k: int) -> ScalarExpression:
    return ScalarPower(toScalarExpression(e), k)


def piecewise(
    first: ScalarLike, second: ScalarLike, useFirst: Callable[[], bool]
) -> ScalarExpression:
    return ScalarPiecewise(toScalarExpression(first), toScalarExpression(second), useFirst)


def atan2(y: ScalarLike, x: ScalarLike) -> ScalarExpression:
    return ScalarAtan2(toScalarExpression(y), toScalarExpression(x))
