"""
Transformation Expressions
==========================

Expressions whose value is a 4x4 rigid transformation

.. math::
   \\mathbf{T} = \\begin{bmatrix} \\mathbf{C} & \\vec{t} \\\\ \\vec{0}^T & 1 \\end{bmatrix}.

The tangent space is six-dimensional, ordered translation first,
:math:`\\boldsymbol{\\xi} = [\\boldsymbol{\\rho}; \\boldsymbol{\\phi}]`, with a left
perturbation

.. math::
   \\mathbf{T} \\leftarrow \\begin{bmatrix} \\exp(\\boldsymbol{\\phi}^\\wedge) & \\boldsymbol{\\rho} \\\\ \\vec{0}^T & 1 \\end{bmatrix} \\mathbf{T}.

Under this convention the Jacobian of a product with respect to its right
operand is the adjoint :func:`~optexpr.kinematics.boxTimes` of the left operand.

.. autosummary::
   :nosignatures:

   TransformationExpression
   TransformationConstant
   TransformationBasic
   TransformationProduct
   TransformationInverse
   TransformedPoint
   TransformedHomogeneousPoint
   TransformationTranslation
   TransformationRotation
"""
from __future__ import annotations

import logging
from typing import Union

import numpy as np
from numpy.typing import NDArray

from optexpr import kinematics, util
from optexpr.expressions import ConstantNode, ExpressionNode
from optexpr.expressions.homogeneous import HomogeneousConstant, HomogeneousExpression
from optexpr.expressions.rotation import RotationExpression, rotationVector
from optexpr.expressions.vector import (
    EuclideanExpression,
    VectorExpression,
    toVectorExpression,
)
from optexpr.jacobians import JacobianContainer
from optexpr.typing import FloatArray, override

logger = logging.getLogger(__name__)

__all__ = [
    "TransformationExpression",
    "TransformationConstant",
    "TransformationBasic",
    "TransformationProduct",
    "TransformationInverse",
    "TransformedPoint",
    "TransformedHomogeneousPoint",
    "TransformationTranslation",
    "TransformationRotation",
]


def _contiguous(T: NDArray[np.double]) -> NDArray[np.double]:
    return np.ascontiguousarray(T, dtype=np.double)


class TransformationExpression(ExpressionNode):
    """
    Base class for transformation-valued expressions
    """

    @property
    @override
    def tangentDimension(self) -> int:
        return 6

    @override
    def tangentDifference(self, a: object, b: object) -> NDArray[np.double]:
        D = np.asarray(a) @ kinematics.invertTransformation(_contiguous(b))
        phi = rotationVector(D[:3, :3])
        rho = kinematics.leftJacobianInverse(_contiguous(phi)) @ D[:3, 3]
        return np.concatenate((rho, phi))

    def toTransformationMatrix(self) -> NDArray[np.double]:
        return np.asarray(self.evaluate(), dtype=np.double)

    def inverse(self) -> TransformationExpression:
        return TransformationInverse(self)

    def toRotationExpression(self) -> RotationExpression:
        return TransformationRotation(self)

    def toEuclideanExpression(self) -> EuclideanExpression:
        return TransformationTranslation(self)

    def __mul__(
        self,
        other: Union[TransformationExpression, VectorExpression, FloatArray],
    ) -> Union[TransformationExpression, VectorExpression]:
        if isinstance(other, TransformationExpression):
            return TransformationProduct(self, other)
        if isinstance(other, HomogeneousExpression):
            return TransformedHomogeneousPoint(self, other)
        if not isinstance(other, ExpressionNode) and np.size(other) == 4:
            return TransformedHomogeneousPoint(self, HomogeneousConstant(other))
        return TransformedPoint(self, toVectorExpression(other))


class TransformationConstant(ConstantNode, TransformationExpression):
    """
    A constant transformation

    Args:
        T: a 4x4 matrix
    """

    def __init__(self, T: FloatArray) -> None:
        mat = np.array(T, dtype=np.double)
        if not mat.shape == (4, 4):
            raise ValueError(f"Transformation must be 4x4, got shape {mat.shape}")
        super().__init__(mat)

    @classmethod
    def fromRotationTranslation(
        cls, C: FloatArray, t: FloatArray
    ) -> TransformationConstant:
        return cls(
            kinematics.transformation(
                np.asarray(C, dtype=np.double), util.toVector(t, 3)
            )
        )


class TransformationBasic(TransformationExpression):
    """
    A transformation assembled from a rotation and a translation expression

    Args:
        rotation: the rotation, :math:`\\mathbf{C}`
        translation: the translation, :math:`\\vec{t}`
    """

    def __init__(
        self, rotation: RotationExpression, translation: VectorExpression
    ) -> None:
        if not isinstance(rotation, RotationExpression):
            raise TypeError(f"Expected a rotation expression, got {rotation!r}")
        if not isinstance(translation, VectorExpression) or not translation.dimension == 3:
            raise TypeError(f"Expected a 3-vector expression, got {translation!r}")
        super().__init__(rotation, translation)

    def _evaluate(self, C, t):
        return kinematics.transformation(_contiguous(C), _contiguous(t))

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        _, t = self._cached()

        # exp(phi) C, t fixed  ->  rho = [t]x phi
        rotJac = np.zeros((6, 3))
        rotJac[:3, :] = kinematics.crossMx(_contiguous(t))
        rotJac[3:, :] = np.eye(3)
        self._children[0].evaluateJacobians(jc, rotJac)

        self._children[1].evaluateJacobians(jc, np.eye(6, 3))


class TransformationProduct(TransformationExpression):
    """
    ``lhs @ rhs``
    """

    def __init__(
        self, lhs: TransformationExpression, rhs: TransformationExpression
    ) -> None:
        super().__init__(lhs, rhs)

    def _evaluate(self, lhs, rhs):
        return lhs @ rhs

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        lhs, _ = self._cached()
        self._children[0].evaluateJacobians(jc)
        self._children[1].evaluateJacobians(jc, kinematics.boxTimes(_contiguous(lhs)))


class TransformationInverse(TransformationExpression):
    def __init__(self, operand: TransformationExpression) -> None:
        super().__init__(operand)

    def _evaluate(self, T):
        return kinematics.invertTransformation(_contiguous(T))

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        self._cached()
        self._children[0].evaluateJacobians(
            jc, -kinematics.boxTimes(_contiguous(self._value))
        )


class TransformedPoint(EuclideanExpression):
    """
    A Euclidean point mapped through a transformation, ``C p + t``
    """

    def __init__(
        self, transformation: TransformationExpression, point: VectorExpression
    ) -> None:
        if not isinstance(transformation, TransformationExpression):
            raise TypeError(f"Expected a transformation expression, got {transformation!r}")
        if not isinstance(point, VectorExpression) or not point.dimension == 3:
            raise TypeError(f"Expected a 3-vector expression, got {point!r}")
        super().__init__(transformation, point)

    def _evaluate(self, T, p):
        return T[:3, :3] @ p + T[:3, 3]

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        T, _ = self._cached()
        jac = np.zeros((3, 6))
        jac[:, :3] = np.eye(3)
        jac[:, 3:] = -kinematics.crossMx(_contiguous(self._value))
        self._children[0].evaluateJacobians(jc, jac)
        self._children[1].evaluateJacobians(jc, T[:3, :3])


class TransformedHomogeneousPoint(HomogeneousExpression):
    """
    A homogeneous point mapped through a transformation, ``T h``
    """

    def __init__(
        self, transformation: TransformationExpression, point: VectorExpression
    ) -> None:
        if not isinstance(transformation, TransformationExpression):
            raise TypeError(f"Expected a transformation expression, got {transformation!r}")
        if not isinstance(point, VectorExpression) or not point.dimension == 4:
            raise TypeError(f"Expected a homogeneous expression, got {point!r}")
        super().__init__(transformation, point)

    def _evaluate(self, T, h):
        return T @ h

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        T, _ = self._cached()
        r = self._value
        jac = np.zeros((4, 6))
        jac[:3, :3] = r[3] * np.eye(3)
        jac[:3, 3:] = -kinematics.crossMx(_contiguous(r[:3]))
        self._children[0].evaluateJacobians(jc, jac)
        self._children[1].evaluateJacobians(jc, T)


class TransformationTranslation(EuclideanExpression):
    """
    The translation part of a transformation
    """

    def __init__(self, transformation: TransformationExpression) -> None:
        super().__init__(transformation)

    def _evaluate(self, T):
        return T[:3, 3].copy()

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        self._cached()
        jac = np.zeros((3, 6))
        jac[:, :3] = np.eye(3)
        jac[:, 3:] = -kinematics.crossMx(_contiguous(self._value))
        self._children[0].evaluateJacobians(jc, jac)


class TransformationRotation(RotationExpression):
    """
    The rotation part of a transformation
    """

    def __init__(self, transformation: TransformationExpression) -> None:
        super().__init__(transformation)

    def _evaluate(self, T):
        return T[:3, :3].copy()

    @override
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        self._children[0].evaluateJacobians(jc, np.eye(3, 6, 3))
