"""
Homogeneous Point Expressions
=============================

Expressions whose value is a homogeneous 4-vector ``[v; w]`` representing the
Euclidean point ``v / w``. The tangent space is additive in all four
coordinates, so homogeneous expressions are also
:class:`~optexpr.expressions.vector.VectorExpression` objects.

.. autosummary::
   :nosignatures:

   HomogeneousExpression
   HomogeneousConstant
   HomogeneousPoint
   EuclideanToHomogeneous
   HomogeneousToEuclidean

.. autosummary::

   toHomogeneous
   toEuclidean
"""
from __future__ import annotations

import logging

import numpy as np
from numpy.typing import NDArray

from optexpr import util
from optexpr.expressions import ExpressionNode
from optexpr.expressions.vector import (
    DesignVariableVector,
    EuclideanExpression,
    VectorConstant,
    VectorExpression,
    VectorLike,
    toVectorExpression,
)
from optexpr.jacobians import JacobianContainer
from optexpr.typing import FloatArray, override

logger = logging.getLogger(__name__)

__all__ = [
    "HomogeneousExpression",
    "HomogeneousConstant",
    "HomogeneousPoint",
    "EuclideanToHomogeneous",
    "HomogeneousToEuclidean",
    "toHomogeneous",
    "toEuclidean",
]


class HomogeneousExpression(VectorExpression):
    """
    Base class for homogeneous 4-vector expressions
    """

    def __init__(self, *children: ExpressionNode) -> None:
        super().__init__(4, *children)

    def toEuclidean(self) -> EuclideanExpression:
        return HomogeneousToEuclidean(self)


class HomogeneousConstant(VectorConstant, HomogeneousExpression):
    def __init__(self, value: FloatArray) -> None:
        super().__init__(util.toVector(value, 4))


class HomogeneousPoint(DesignVariableVector, HomogeneousExpression):
    """
    A homogeneous point design variable with additive 4-dim updates

    Args:
        value: ``[x, y, z, w]``
        name: an optional name
    """

    def __init__(self, value: FloatArray, name: str = "") -> None:
        super().__init__(util.toVector(value, 4), name)

    @classmethod
    def fromEuclidean(cls, point: FloatArray, name: str = "") -> HomogeneousPoint:
        return cls(np.append(util.toVector(point, 3), 1.0), name)


class EuclideanToHomogeneous(HomogeneousExpression):
    """
    ``[p; 1]`` for a Euclidean expression ``p``
    """

    def __init__(self, point: VectorExpression) -> None:
        if not isinstance(point, VectorExpression) or not point.dimension == 3:
            raise TypeError(f"Expected a 3-vector expression, got {point!r}")
        super().__init__(point)

    def _evaluate(self, p):
        return np.append(p, 1.0)

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        self._children[0].evaluateJacobians(jc, np.eye(4, 3))


class HomogeneousToEuclidean(EuclideanExpression):
    """
    ``v / w`` for a homogeneous expression ``[v; w]``
    """

    def __init__(self, point: VectorExpression) -> None:
        if not isinstance(point, VectorExpression) or not point.dimension == 4:
            raise TypeError(f"Expected a homogeneous expression, got {point!r}")
        super().__init__(point)

    def _evaluate(self, h):
        return h[:3] / h[3]

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        (h,) = self._cached()
        w = h[3]
        jac = np.zeros((3, 4))
        jac[:, :3] = np.eye(3) / w
        jac[:, 3] = -h[:3] / (w * w)
        self._children[0].evaluateJacobians(jc, jac)


def toHomogeneous(point: VectorLike) -> HomogeneousExpression:
    return EuclideanToHomogeneous(toVectorExpression(point))


def toEuclidean(point: VectorLike) -> EuclideanExpression:
    return HomogeneousToEuclidean(toVectorExpression(point))
