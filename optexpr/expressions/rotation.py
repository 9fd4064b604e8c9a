"""
Rotation Expressions
====================

Expressions whose value is a 3x3 rotation matrix, :math:`\\mathbf{C}`. The
tangent space is the rotation vector of a *left* perturbation,

.. math::
   \\mathbf{C} \\leftarrow \\exp(\\boldsymbol{\\phi}^\\wedge) \\mathbf{C}

so, to first order, :math:`\\delta(\\mathbf{C}\\vec{v}) = -[\\mathbf{C}\\vec{v}]_\\times \\boldsymbol{\\phi}`.

.. autosummary::
   :nosignatures:

   RotationExpression
   RotationConstant
   RotationQuaternion
   RotationProduct
   RotationInverse
   RotatedVector

Reference
-----------

.. autoclass:: RotationExpression
   :members:

.. autoclass:: RotationQuaternion
   :members:
"""
from __future__ import annotations

import logging
from typing import Union

import numpy as np
from numpy.typing import NDArray
from scipy.spatial.transform import Rotation

from optexpr import kinematics, util
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
    "RotationExpression",
    "RotationConstant",
    "RotationQuaternion",
    "RotationProduct",
    "RotationInverse",
    "RotatedVector",
    "rotationVector",
]


def rotationVector(C: NDArray[np.double]) -> NDArray[np.double]:
    """
    The logarithm of a rotation matrix as a rotation vector
    """
    return Rotation.from_matrix(C).as_rotvec()


class RotationExpression(ExpressionNode):
    """
    Base class for rotation-valued expressions
    """

    @property
    @override
    def tangentDimension(self) -> int:
        return 3

    @override
    def tangentDifference(self, a: object, b: object) -> NDArray[np.double]:
        return rotationVector(np.asarray(a) @ np.asarray(b).T)

    def toRotationMatrix(self) -> NDArray[np.double]:
        return np.asarray(self.evaluate(), dtype=np.double)

    def inverse(self) -> RotationExpression:
        return RotationInverse(self)

    def __mul__(
        self, other: Union[RotationExpression, VectorExpression, FloatArray]
    ) -> Union[RotationExpression, EuclideanExpression]:
        if isinstance(other, RotationExpression):
            return RotationProduct(self, other)
        return RotatedVector(self, toVectorExpression(other))


class RotationConstant(ConstantNode, RotationExpression):
    """
    A constant rotation

    Args:
        C: a 3x3 rotation matrix
    """

    def __init__(self, C: FloatArray) -> None:
        mat = np.array(C, dtype=np.double)
        if not mat.shape == (3, 3):
            raise ValueError(f"Rotation matrix must be 3x3, got shape {mat.shape}")
        super().__init__(mat)


class RotationQuaternion(DesignVariable, RotationExpression):
    """
    A rotation design variable stored as a unit quaternion, ``[x, y, z, w]``

    Updates are left-multiplicative, ``q <- exp(dx) (x) q``, with a 3-element
    rotation-vector step. The quaternion is renormalized after every update.

    Args:
        q: the initial quaternion; normalized on construction
        name: an optional name

    Raises:
        ValueError: if ``q`` does not have four elements or has zero norm
    """

    def __init__(self, q: FloatArray, name: str = "") -> None:
        DesignVariable.__init__(self, name)
        RotationExpression.__init__(self)
        self._q = self._normalize(q)
        self._snapshot()

    @staticmethod
    def _normalize(q: FloatArray) -> NDArray[np.double]:
        quat = util.toVector(q, 4)
        norm = np.linalg.norm(quat)
        if not norm > 0:
            raise ValueError("Quaternion must have a non-zero norm")
        return np.ascontiguousarray(quat / norm)

    @classmethod
    def fromRotationMatrix(cls, C: FloatArray, name: str = "") -> RotationQuaternion:
        """
        Construct from a rotation matrix
        """
        return cls(Rotation.from_matrix(np.asarray(C, dtype=np.double)).as_quat(), name)

    @property
    def quaternion(self) -> NDArray[np.double]:
        return self._q.copy()

    @property
    @override
    def minimalDimensions(self) -> int:
        return 3

    @override
    def _getValue(self) -> NDArray[np.double]:
        return self._q.copy()

    @override
    def _setValue(self, value: object) -> None:
        self._q = self._normalize(value)

    @override
    def _plus(self, dx: NDArray[np.double]) -> None:
        dq = kinematics.axisAngle2quat(np.ascontiguousarray(dx, dtype=np.double))
        self._q = self._normalize(kinematics.quatMultiply(dq, self._q))

    @override
    def minimalDifference(self, xHat: object) -> NDArray[np.double]:
        Chat = kinematics.quat2r(self._normalize(xHat))
        return rotationVector(kinematics.quat2r(self._q) @ Chat.T)

    @override
    def evaluate(self) -> NDArray[np.double]:
        self._value = kinematics.quat2r(self._q)
        return self._value

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        jc.add(self)

    @override
    def getDesignVariables(self, designVariables: util.OrderedSet) -> None:
        designVariables.add(self)


class RotationProduct(RotationExpression):
    """
    ``lhs @ rhs``
    """

    def __init__(self, lhs: RotationExpression, rhs: RotationExpression) -> None:
        super().__init__(lhs, rhs)

    def _evaluate(self, lhs, rhs):
        return lhs @ rhs

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        lhs, _ = self._cached()
        self._children[0].evaluateJacobians(jc)
        self._children[1].evaluateJacobians(jc, lhs)


class RotationInverse(RotationExpression):
    def __init__(self, operand: RotationExpression) -> None:
        super().__init__(operand)

    def _evaluate(self, C):
        return C.T.copy()

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        (C,) = self._cached()
        self._children[0].evaluateJacobians(jc, -C.T)


class RotatedVector(EuclideanExpression):
    """
    A 3-vector rotated by a rotation expression, ``C @ v``
    """

    def __init__(self, rotation: RotationExpression, vector: VectorExpression) -> None:
        if not isinstance(rotation, RotationExpression):
            raise TypeError(f"Expected a rotation expression, got {rotation!r}")
        if not isinstance(vector, VectorExpression) or not vector.dimension == 3:
            raise TypeError(f"Expected a 3-vector expression, got {vector!r}")
        super().__init__(rotation, vector)

    def _evaluate(self, C, v):
        return C @ v

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        C, v = self._cached()
        Cv = np.ascontiguousarray(C @ v)
        self._children[0].evaluateJacobians(jc, -kinematics.crossMx(Cv))
        self._children[1].evaluateJacobians(jc, C)
