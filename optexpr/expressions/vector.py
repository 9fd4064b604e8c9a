"""
Vector Expressions
==================

Expressions whose value is a 1D array with an additive tangent space. The
Euclidean (3-vector) family used by rotations and transformations is a
specialization with a fixed dimension of three.

Local derivatives of vector operations are handed to the children as
:mod:`~optexpr.differentials` so that identity branches (e.g., the left side of
a sum) do not allocate any matrices.

.. autosummary::
   :nosignatures:

   VectorExpression
   EuclideanExpression
   VectorConstant
   DesignVariableVector
   EuclideanPoint
   MappedEuclideanPoint
   VectorAdd
   VectorNegate
   VectorScale
   VectorElementwiseProduct
   VectorDot
   VectorElement
   EuclideanCross

.. autosummary::

   toVectorExpression
   dot
   cross
   elementwiseProduct

Reference
-----------

.. autoclass:: VectorExpression
   :members:

.. autoclass:: DesignVariableVector
   :members:

.. autoclass:: MappedEuclideanPoint
   :members:
"""
from __future__ import annotations

import logging
from typing import Union

import numpy as np
from numpy.typing import NDArray

from optexpr import kinematics, util
from optexpr.designvariables import DesignVariable
from optexpr.differentials import IdentityDifferential, MatrixDifferential
from optexpr.expressions import ConstantNode, ExpressionNode
from optexpr.expressions.scalar import ScalarExpression, toScalarExpression
from optexpr.jacobians import JacobianContainer
from optexpr.typing import FloatArray, override

logger = logging.getLogger(__name__)

__all__ = [
    "VectorExpression",
    "EuclideanExpression",
    "VectorConstant",
    "DesignVariableVector",
    "EuclideanPoint",
    "MappedEuclideanPoint",
    "VectorAdd",
    "VectorNegate",
    "VectorScale",
    "VectorElementwiseProduct",
    "VectorDot",
    "VectorElement",
    "EuclideanCross",
    "toVectorExpression",
    "dot",
    "cross",
    "elementwiseProduct",
]

VectorLike = Union["VectorExpression", FloatArray]


def toVectorExpression(val: VectorLike) -> VectorExpression:
    """
    Promote an array to a constant vector node; expressions pass through
    """
    if isinstance(val, VectorExpression):
        return val
    if isinstance(val, ExpressionNode):
        raise TypeError(f"Cannot use {val!r} as a vector expression")
    vec = util.toVector(val)
    if vec.size == 3:
        return EuclideanConstant(vec)
    return VectorConstant(vec)


def _checkSameDimension(lhs: VectorExpression, rhs: VectorExpression) -> None:
    if not lhs.dimension == rhs.dimension:
        raise ValueError(
            f"Vector dimensions do not match: {lhs.dimension} and {rhs.dimension}"
        )


def _checkEuclidean(vec: ExpressionNode) -> None:
    if not isinstance(vec, VectorExpression) or not vec.dimension == 3:
        raise TypeError(f"Expected a 3-vector expression, got {vec!r}")


class VectorExpression(ExpressionNode):
    """
    Base class for vector-valued expressions

    Args:
        dimension: the number of elements in the value
        children: the operand nodes
    """

    def __init__(self, dimension: int, *children: ExpressionNode) -> None:
        super().__init__(*children)
        if not int(dimension) > 0:
            raise ValueError("Vector dimension must be positive")
        self._dimension = int(dimension)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: dim={self._dimension}>"

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    @override
    def tangentDimension(self) -> int:
        return self._dimension

    def toValue(self) -> NDArray[np.double]:
        return np.asarray(self.evaluate(), dtype=np.double)

    # -------------------------------------------
    # Operators

    def __add__(self, other: VectorLike) -> VectorExpression:
        return VectorAdd(self, toVectorExpression(other))

    def __radd__(self, other: VectorLike) -> VectorExpression:
        return VectorAdd(toVectorExpression(other), self)

    def __sub__(self, other: VectorLike) -> VectorExpression:
        return VectorAdd(self, toVectorExpression(other), multiplier=-1.0)

    def __rsub__(self, other: VectorLike) -> VectorExpression:
        return VectorAdd(toVectorExpression(other), self, multiplier=-1.0)

    def __neg__(self) -> VectorExpression:
        return VectorNegate(self)

    def __mul__(self, other: Union[ScalarExpression, float]) -> VectorExpression:
        return VectorScale(self, toScalarExpression(other))

    def __rmul__(self, other: Union[ScalarExpression, float]) -> VectorExpression:
        return VectorScale(self, toScalarExpression(other))

    def dot(self, other: VectorLike) -> ScalarExpression:
        return VectorDot(self, toVectorExpression(other))

    def element(self, index: int) -> ScalarExpression:
        return VectorElement(self, index)


class EuclideanExpression(VectorExpression):
    """
    Base class for 3-vector expressions
    """

    def __init__(self, *children: ExpressionNode) -> None:
        super().__init__(3, *children)

    def cross(self, other: VectorLike) -> EuclideanExpression:
        return EuclideanCross(self, toVectorExpression(other))


# ------------------------------------------------------------------------------
# Leaves


class VectorConstant(ConstantNode, VectorExpression):
    """
    A constant vector
    """

    def __init__(self, value: FloatArray) -> None:
        vec = util.toVector(value)
        ConstantNode.__init__(self, vec)
        self._dimension = vec.size

    @override
    def evaluate(self) -> NDArray[np.double]:
        return self._value.copy()  # type: ignore[union-attr]


class EuclideanConstant(VectorConstant, EuclideanExpression):
    """
    A constant 3-vector
    """

    def __init__(self, value: FloatArray) -> None:
        super().__init__(util.toVector(value, 3))


class DesignVariableVector(DesignVariable, VectorExpression):
    """
    A vector design variable with additive updates

    Args:
        value: the initial value
        name: an optional name
    """

    def __init__(self, value: FloatArray, name: str = "") -> None:
        vec = util.toVector(value)
        DesignVariable.__init__(self, name)
        VectorExpression.__init__(self, vec.size)
        self._x = vec
        self._snapshot()

    @property
    @override
    def minimalDimensions(self) -> int:
        return self._dimension

    @override
    def _getValue(self) -> NDArray[np.double]:
        return self._x.copy()

    @override
    def _setValue(self, value: object) -> None:
        self._x = util.toVector(value, self._dimension)

    @override
    def _plus(self, dx: NDArray[np.double]) -> None:
        self._x = self._x + dx

    @override
    def evaluate(self) -> NDArray[np.double]:
        self._value = self._x.copy()
        return self._value

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        jc.add(self)

    @override
    def getDesignVariables(self, designVariables: util.OrderedSet) -> None:
        designVariables.add(self)


class EuclideanPoint(DesignVariableVector, EuclideanExpression):
    """
    A 3-vector design variable with additive updates
    """

    def __init__(self, value: FloatArray, name: str = "") -> None:
        super().__init__(util.toVector(value, 3), name)


class MappedEuclideanPoint(EuclideanPoint):
    """
    A 3-vector design variable that reads and writes a caller-owned buffer

    Updates modify the buffer in place, so changes are visible to any other
    code holding a reference to it.

    Args:
        buffer: a contiguous float64 array with three elements
        name: an optional name

    Raises:
        TypeError: if ``buffer`` is not a float64 numpy array
        ValueError: if ``buffer`` does not have three elements
    """

    def __init__(self, buffer: NDArray[np.double], name: str = "") -> None:
        if not isinstance(buffer, np.ndarray) or not buffer.dtype == np.double:
            raise TypeError("MappedEuclideanPoint requires a float64 numpy array")
        if not buffer.size == 3:
            raise ValueError("MappedEuclideanPoint requires a 3-element buffer")

        self._buffer = buffer.reshape(-1)
        if not np.shares_memory(self._buffer, buffer):
            raise ValueError("MappedEuclideanPoint requires a contiguous buffer")
        super().__init__(self._buffer, name)

    @override
    def _getValue(self) -> NDArray[np.double]:
        return self._buffer.copy()

    @override
    def _setValue(self, value: object) -> None:
        self._buffer[:] = util.toVector(value, 3)

    @override
    def _plus(self, dx: NDArray[np.double]) -> None:
        self._buffer += dx

    @override
    def evaluate(self) -> NDArray[np.double]:
        self._value = self._buffer.copy()
        return self._value


# ------------------------------------------------------------------------------
# Operations


class VectorAdd(VectorExpression):
    """
    ``lhs + multiplier * rhs``
    """

    def __init__(
        self, lhs: VectorExpression, rhs: VectorExpression, multiplier: float = 1.0
    ) -> None:
        _checkSameDimension(lhs, rhs)
        super().__init__(lhs.dimension, lhs, rhs)
        self.multiplier = float(multiplier)

    def _evaluate(self, lhs, rhs):
        return lhs + self.multiplier * rhs

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        lhs, rhs = self._children
        lhs.evaluateJacobiansWithDifferential(jc, IdentityDifferential(self._dimension))
        if self.multiplier == 1.0:
            rhsDiff = IdentityDifferential(self._dimension)
        else:
            rhsDiff = MatrixDifferential(self.multiplier * np.eye(self._dimension))
        rhs.evaluateJacobiansWithDifferential(jc, rhsDiff)


class VectorNegate(VectorExpression):
    def __init__(self, operand: VectorExpression) -> None:
        super().__init__(operand.dimension, operand)

    def _evaluate(self, value):
        return -value

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        self._children[0].evaluateJacobiansWithDifferential(
            jc, MatrixDifferential(-np.eye(self._dimension))
        )


class VectorScale(VectorExpression):
    """
    A vector multiplied by a scalar expression
    """

    def __init__(self, vector: VectorExpression, scalar: ScalarExpression) -> None:
        super().__init__(vector.dimension, vector, scalar)

    def _evaluate(self, vector, scalar):
        return scalar * vector

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        vector, scalar = self._cached()
        self._children[0].evaluateJacobiansWithDifferential(
            jc, MatrixDifferential(scalar * np.eye(self._dimension))
        )
        self._children[1].evaluateJacobiansWithDifferential(
            jc, MatrixDifferential(vector.reshape((-1, 1)))
        )


class VectorElementwiseProduct(VectorExpression):
    def __init__(self, lhs: VectorExpression, rhs: VectorExpression) -> None:
        _checkSameDimension(lhs, rhs)
        super().__init__(lhs.dimension, lhs, rhs)

    def _evaluate(self, lhs, rhs):
        return lhs * rhs

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        lhs, rhs = self._cached()
        self._children[0].evaluateJacobiansWithDifferential(
            jc, MatrixDifferential(np.diag(rhs))
        )
        self._children[1].evaluateJacobiansWithDifferential(
            jc, MatrixDifferential(np.diag(lhs))
        )


class VectorDot(ScalarExpression):
    """
    The inner product of two vectors
    """

    def __init__(self, lhs: VectorExpression, rhs: VectorExpression) -> None:
        _checkSameDimension(lhs, rhs)
        super().__init__(lhs, rhs)

    def _evaluate(self, lhs, rhs):
        return float(lhs @ rhs)

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        lhs, rhs = self._cached()
        self._children[0].evaluateJacobiansWithDifferential(
            jc, MatrixDifferential(rhs.reshape((1, -1)))
        )
        self._children[1].evaluateJacobiansWithDifferential(
            jc, MatrixDifferential(lhs.reshape((1, -1)))
        )


class VectorElement(ScalarExpression):
    """
    A single element of a vector

    Raises:
        IndexError: if ``index`` is out of range
    """

    def __init__(self, vector: VectorExpression, index: int) -> None:
        if not 0 <= index < vector.dimension:
            raise IndexError(
                f"Element {index} is out of range for a {vector.dimension}-vector"
            )
        super().__init__(vector)
        self.index = int(index)

    def _evaluate(self, vector):
        return float(vector[self.index])

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        row = np.zeros((1, self._children[0].tangentDimension))
        row[0, self.index] = 1.0
        self._children[0].evaluateJacobiansWithDifferential(jc, MatrixDifferential(row))


class EuclideanCross(EuclideanExpression):
    """
    ``lhs x rhs``
    """

    def __init__(self, lhs: VectorExpression, rhs: VectorExpression) -> None:
        _checkEuclidean(lhs)
        _checkEuclidean(rhs)
        super().__init__(lhs, rhs)

    def _evaluate(self, lhs, rhs):
        return np.cross(lhs, rhs)

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        lhs, rhs = self._cached()
        self._children[0].evaluateJacobiansWithDifferential(
            jc, MatrixDifferential(-kinematics.crossMx(rhs))
        )
        self._children[1].evaluateJacobiansWithDifferential(
            jc, MatrixDifferential(kinematics.crossMx(lhs))
        )


def dot(lhs: VectorLike, rhs: VectorLike) -> ScalarExpression:
    return VectorDot(toVectorExpression(lhs), toVectorExpression(rhs))


def cross(lhs: VectorLike, rhs: VectorLike) -> EuclideanExpression:
    return EuclideanCross(toVectorExpression(lhs), toVectorExpression(rhs))


def elementwiseProduct(lhs: VectorLike, rhs: VectorLike) -> VectorExpression:
    return VectorElementwiseProduct(toVectorExpression(lhs), toVectorExpression(rhs))
