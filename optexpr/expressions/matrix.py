"""
Matrix Expressions
==================

Expressions whose value is a general 3x3 matrix. The tangent space holds the
nine entries in column-major order, i.e., entry ``(i, j)`` maps to tangent
index ``i + 3 j``.

:class:`MatrixTransformation` is a matrix design variable in which only the
entries selected by an *update pattern* are free.

.. autosummary::
   :nosignatures:

   MatrixExpression
   MatrixConstant
   MatrixTransformation
   MatrixTimesVector
"""
from __future__ import annotations

import logging
from typing import Union

import numpy as np
from numpy.typing import NDArray

from optexpr import util
from optexpr.designvariables import DesignVariable
from optexpr.expressions import ConstantNode, ExpressionNode
from optexpr.expressions.vector import (
    EuclideanExpression,
    VectorExpression,
    toVectorExpression,
)
from optexpr.jacobians import JacobianContainer
from optexpr.typing import FloatArray, override

logger = logging.getLogger(__name__)

__all__ = [
    "MatrixExpression",
    "MatrixConstant",
    "MatrixTransformation",
    "MatrixTimesVector",
]


def _matrix(value: FloatArray) -> NDArray[np.double]:
    mat = np.array(value, dtype=np.double)
    if not mat.shape == (3, 3):
        raise ValueError(f"Expected a 3x3 matrix, got shape {mat.shape}")
    return mat


class MatrixExpression(ExpressionNode):
    """
    Base class for 3x3 matrix-valued expressions
    """

    @property
    @override
    def tangentDimension(self) -> int:
        return 9

    @override
    def tangentDifference(self, a: object, b: object) -> NDArray[np.double]:
        return np.ravel(np.asarray(a) - np.asarray(b), order="F")

    def toMatrix(self) -> NDArray[np.double]:
        return np.asarray(self.evaluate(), dtype=np.double)

    def __mul__(self, other: Union[VectorExpression, FloatArray]) -> EuclideanExpression:
        return MatrixTimesVector(self, toVectorExpression(other))


class MatrixConstant(ConstantNode, MatrixExpression):
    def __init__(self, A: FloatArray) -> None:
        super().__init__(_matrix(A))


class MatrixTransformation(DesignVariable, MatrixExpression):
    """
    A 3x3 matrix design variable with a selectable set of free entries

    Args:
        A: the initial matrix
        updatePattern: a 3x3 array of 0/1 values; entries with a 1 are free.
            Defaults to all entries free.
        name: an optional name

    The tangent space of the variable lists the free entries in column-major
    order; an update ``dx[k]`` is added to the ``k``-th free entry.

    Raises:
        ValueError: if the pattern is not 3x3, contains values other than 0 and
            1, or has no free entries
    """

    def __init__(
        self,
        A: FloatArray,
        updatePattern: Union[None, FloatArray] = None,
        name: str = "",
    ) -> None:
        DesignVariable.__init__(self, name)
        MatrixExpression.__init__(self)

        self._A = _matrix(A)

        pattern = np.ones((3, 3)) if updatePattern is None else _matrix(updatePattern)
        if not np.all(np.logical_or(pattern == 0, pattern == 1)):
            raise ValueError("updatePattern may only contain 0 and 1")

        #: column-major indices of the free entries
        self._freeIndices = np.flatnonzero(np.ravel(pattern, order="F"))
        if self._freeIndices.size == 0:
            raise ValueError("updatePattern must contain at least one free entry")

        self._pattern = pattern
        self._snapshot()

    @property
    def updatePattern(self) -> NDArray[np.double]:
        return self._pattern.copy()

    @property
    @override
    def minimalDimensions(self) -> int:
        return int(self._freeIndices.size)

    @override
    def _getValue(self) -> NDArray[np.double]:
        return self._A.copy()

    @override
    def _setValue(self, value: object) -> None:
        self._A = _matrix(value)

    @override
    def _plus(self, dx: NDArray[np.double]) -> None:
        A = self._A.copy()
        for k, ix in enumerate(self._freeIndices):
            A[ix % 3, ix // 3] += dx[k]
        self._A = A

    @override
    def minimalDifference(self, xHat: object) -> NDArray[np.double]:
        diff = np.ravel(self._A - _matrix(xHat), order="F")
        return diff[self._freeIndices]

    @override
    def evaluate(self) -> NDArray[np.double]:
        self._value = self._A.copy()
        return self._value

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        # Select the chain-rule columns of the free entries
        selection = np.zeros((9, self.minimalDimensions))
        selection[self._freeIndices, np.arange(self.minimalDimensions)] = 1.0
        jc.add(self, selection)

    @override
    def getDesignVariables(self, designVariables: util.OrderedSet) -> None:
        designVariables.add(self)


class MatrixTimesVector(EuclideanExpression):
    """
    ``A @ p`` for a matrix expression ``A`` and a 3-vector expression ``p``
    """

    def __init__(self, matrix: MatrixExpression, vector: VectorExpression) -> None:
        if not isinstance(matrix, MatrixExpression):
            raise TypeError(f"Expected a matrix expression, got {matrix!r}")
        if not isinstance(vector, VectorExpression) or not vector.dimension == 3:
            raise TypeError(f"Expected a 3-vector expression, got {vector!r}")
        super().__init__(matrix, vector)

    def _evaluate(self, A, p):
        return A @ p

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        A, p = self._cached()
        # d(Ap)/dA_ij = p_j e_i, stored in column i + 3j
        self._children[0].evaluateJacobians(jc, np.kron(p.reshape((1, 3)), np.eye(3)))
        self._children[1].evaluateJacobians(jc, A)
