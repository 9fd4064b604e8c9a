"""
Quaternion Expressions
======================

Generic (not necessarily unit) quaternion arithmetic on 4-vector expressions
stored as ``[x, y, z, w]``. Unlike :class:`~optexpr.expressions.rotation.RotationQuaternion`,
the tangent space here is additive in all four components, so any
:class:`~optexpr.expressions.vector.VectorExpression` of dimension four can be
used as an operand.

Each operation is linear in each operand once the other is fixed. The local
derivatives are therefore supplied as linear maps (``applyLhsDiff`` and
``applyRhsDiff``) wrapped in :class:`~optexpr.differentials.ComposedDifferential`
objects and only materialized when they reach the Jacobian container.

.. autosummary::
   :nosignatures:

   QuaternionProduct
   QuaternionConjugate
   QuaternionInverse
   QuaternionRotate3Vector

.. autosummary::

   quaternionProduct
   conjugate
   inverse
   rotate3Vector
"""
from __future__ import annotations

import logging

import numpy as np
from numpy.typing import NDArray

from optexpr import kinematics
from optexpr.differentials import ComposedDifferential, IdentityDifferential
from optexpr.expressions.vector import (
    EuclideanExpression,
    VectorExpression,
    VectorLike,
    toVectorExpression,
)
from optexpr.jacobians import JacobianContainer
from optexpr.typing import override

logger = logging.getLogger(__name__)

__all__ = [
    "QuaternionProduct",
    "QuaternionConjugate",
    "QuaternionInverse",
    "QuaternionRotate3Vector",
    "quaternionProduct",
    "conjugate",
    "inverse",
    "rotate3Vector",
]


def _q(v: NDArray[np.double]) -> NDArray[np.double]:
    return np.ascontiguousarray(v, dtype=np.double)


def _checkQuaternion(node: object) -> None:
    if not isinstance(node, VectorExpression) or not node.dimension == 4:
        raise TypeError(f"Expected a 4-vector expression, got {node!r}")


def _inverse(q: NDArray[np.double]) -> NDArray[np.double]:
    return kinematics.quatConjugate(q) / (q @ q)


def _inverseDiff(q: NDArray[np.double], v: NDArray[np.double]) -> NDArray[np.double]:
    """
    Directional derivative of ``q^-1`` along ``v``
    """
    n = q @ q
    return kinematics.quatConjugate(v) / n - kinematics.quatConjugate(q) * (
        2.0 * (q @ v) / (n * n)
    )


def _pure(p: NDArray[np.double]) -> NDArray[np.double]:
    return np.append(p, 0.0)


class QuaternionProduct(VectorExpression):
    """
    The Hamilton product ``lhs (x) rhs``
    """

    def __init__(self, lhs: VectorExpression, rhs: VectorExpression) -> None:
        _checkQuaternion(lhs)
        _checkQuaternion(rhs)
        super().__init__(4, lhs, rhs)

    def _evaluate(self, lhs, rhs):
        return kinematics.quatMultiply(_q(lhs), _q(rhs))

    def applyLhsDiff(self, v: NDArray[np.double]) -> NDArray[np.double]:
        _, rhs = self._cached()
        return kinematics.quatMultiply(_q(v), _q(rhs))

    def applyRhsDiff(self, v: NDArray[np.double]) -> NDArray[np.double]:
        lhs, _ = self._cached()
        return kinematics.quatMultiply(_q(lhs), _q(v))

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        self._children[0].evaluateJacobiansWithDifferential(
            jc, ComposedDifferential(self.applyLhsDiff, 4, IdentityDifferential(4))
        )
        self._children[1].evaluateJacobiansWithDifferential(
            jc, ComposedDifferential(self.applyRhsDiff, 4, IdentityDifferential(4))
        )


class QuaternionConjugate(VectorExpression):
    def __init__(self, operand: VectorExpression) -> None:
        _checkQuaternion(operand)
        super().__init__(4, operand)

    def _evaluate(self, q):
        return kinematics.quatConjugate(_q(q))

    def applyDiff(self, v: NDArray[np.double]) -> NDArray[np.double]:
        return kinematics.quatConjugate(_q(v))

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        self._children[0].evaluateJacobiansWithDifferential(
            jc, ComposedDifferential(self.applyDiff, 4, IdentityDifferential(4))
        )


class QuaternionInverse(VectorExpression):
    """
    ``q^-1 = conj(q) / |q|^2``
    """

    def __init__(self, operand: VectorExpression) -> None:
        _checkQuaternion(operand)
        super().__init__(4, operand)

    def _evaluate(self, q):
        return _inverse(_q(q))

    def applyDiff(self, v: NDArray[np.double]) -> NDArray[np.double]:
        (q,) = self._cached()
        return _inverseDiff(_q(q), _q(v))

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        self._children[0].evaluateJacobiansWithDifferential(
            jc, ComposedDifferential(self.applyDiff, 4, IdentityDifferential(4))
        )


class QuaternionRotate3Vector(EuclideanExpression):
    """
    Rotate a 3-vector by a quaternion, ``vec(q (x) [p; 0] (x) q^-1)``
    """

    def __init__(self, quaternion: VectorExpression, vector: VectorExpression) -> None:
        _checkQuaternion(quaternion)
        if not isinstance(vector, VectorExpression) or not vector.dimension == 3:
            raise TypeError(f"Expected a 3-vector expression, got {vector!r}")
        super().__init__(quaternion, vector)

    def _evaluate(self, q, p):
        q = _q(q)
        return kinematics.quatMultiply(
            kinematics.quatMultiply(q, _pure(p)), _inverse(q)
        )[:3]

    def applyLhsDiff(self, v: NDArray[np.double]) -> NDArray[np.double]:
        q, p = self._cached()
        q, v, P = _q(q), _q(v), _pure(p)
        dq = kinematics.quatMultiply(
            kinematics.quatMultiply(v, P), _inverse(q)
        ) + kinematics.quatMultiply(kinematics.quatMultiply(q, P), _inverseDiff(q, v))
        return dq[:3]

    def applyRhsDiff(self, v: NDArray[np.double]) -> NDArray[np.double]:
        q, _ = self._cached()
        q = _q(q)
        return kinematics.quatMultiply(
            kinematics.quatMultiply(q, _pure(v)), _inverse(q)
        )[:3]

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        self._children[0].evaluateJacobiansWithDifferential(
            jc, ComposedDifferential(self.applyLhsDiff, 4, IdentityDifferential(3))
        )
        self._children[1].evaluateJacobiansWithDifferential(
            jc, ComposedDifferential(self.applyRhsDiff, 3, IdentityDifferential(3))
        )


def quaternionProduct(lhs: VectorLike, rhs: VectorLike) -> VectorExpression:
    return QuaternionProduct(toVectorExpression(lhs), toVectorExpression(rhs))


def conjugate(q: VectorLike) -> VectorExpression:
    return QuaternionConjugate(toVectorExpression(q))


def inverse(q: VectorLike) -> VectorExpression:
    return QuaternionInverse(toVectorExpression(q))


def rotate3Vector(q: VectorLike, p: VectorLike) -> EuclideanExpression:
    return QuaternionRotate3Vector(toVectorExpression(q), toVectorExpression(p))
