"""
Kinematics
==========

Small rotation, quaternion, and rigid-transformation kernels shared by the
expression nodes. The kernels are compiled with :func:`numba.njit` and expect
contiguous ``float64`` arrays.

Quaternions are stored as ``[x, y, z, w]`` (scalar last) and multiply with the
Hamilton convention so that ``quat2r(quatMultiply(p, q)) == quat2r(p) @ quat2r(q)``.

Rigid transformations are perturbed on the left, ``T <- exp(xi^) T`` with the
tangent ordered as ``xi = [rho; phi]`` (translation first).

.. autosummary::
   crossMx
   quatMultiply
   quatConjugate
   quat2r
   axisAngle2quat
   leftJacobianInverse
   boxTimes
   transformation
   invertTransformation

Reference
-----------

.. autofunction:: crossMx
.. autofunction:: quatMultiply
.. autofunction:: quatConjugate
.. autofunction:: quat2r
.. autofunction:: axisAngle2quat
.. autofunction:: leftJacobianInverse
.. autofunction:: boxTimes
.. autofunction:: transformation
.. autofunction:: invertTransformation
"""
import numpy as np
from numba import njit
from numpy.typing import NDArray

__all__ = [
    "crossMx",
    "quatMultiply",
    "quatConjugate",
    "quat2r",
    "axisAngle2quat",
    "leftJacobianInverse",
    "boxTimes",
    "transformation",
    "invertTransformation",
]


@njit
def crossMx(v: NDArray[np.double]) -> NDArray[np.double]:
    """
    Skew-symmetric cross-product matrix, ``crossMx(a) @ b == cross(a, b)``

    Args:
        v: a 3-vector

    Returns:
        the 3x3 cross-product matrix of ``v``
    """
    mx = np.zeros((3, 3))
    mx[0, 1] = -v[2]
    mx[0, 2] = v[1]
    mx[1, 0] = v[2]
    mx[1, 2] = -v[0]
    mx[2, 0] = -v[1]
    mx[2, 1] = v[0]
    return mx


@njit
def quatMultiply(p: NDArray[np.double], q: NDArray[np.double]) -> NDArray[np.double]:
    """
    Hamilton product ``p (x) q`` of two quaternions stored as ``[x, y, z, w]``
    """
    out = np.zeros(4)
    out[0] = p[3] * q[0] + p[0] * q[3] + p[1] * q[2] - p[2] * q[1]
    out[1] = p[3] * q[1] - p[0] * q[2] + p[1] * q[3] + p[2] * q[0]
    out[2] = p[3] * q[2] + p[0] * q[1] - p[1] * q[0] + p[2] * q[3]
    out[3] = p[3] * q[3] - p[0] * q[0] - p[1] * q[1] - p[2] * q[2]
    return out


@njit
def quatConjugate(q: NDArray[np.double]) -> NDArray[np.double]:
    out = np.zeros(4)
    out[0] = -q[0]
    out[1] = -q[1]
    out[2] = -q[2]
    out[3] = q[3]
    return out


@njit
def quat2r(q: NDArray[np.double]) -> NDArray[np.double]:
    """
    Rotation matrix of a unit quaternion

    Args:
        q: a unit quaternion, ``[x, y, z, w]``

    Returns:
        the 3x3 rotation matrix that rotates vectors by ``q``
    """
    x, y, z, w = q[0], q[1], q[2], q[3]
    C = np.zeros((3, 3))
    C[0, 0] = 1.0 - 2.0 * (y * y + z * z)
    C[0, 1] = 2.0 * (x * y - z * w)
    C[0, 2] = 2.0 * (x * z + y * w)
    C[1, 0] = 2.0 * (x * y + z * w)
    C[1, 1] = 1.0 - 2.0 * (x * x + z * z)
    C[1, 2] = 2.0 * (y * z - x * w)
    C[2, 0] = 2.0 * (x * z - y * w)
    C[2, 1] = 2.0 * (y * z + x * w)
    C[2, 2] = 1.0 - 2.0 * (x * x + y * y)
    return C


@njit
def axisAngle2quat(a: NDArray[np.double]) -> NDArray[np.double]:
    """
    Quaternion exponential map of a rotation vector

    Args:
        a: a rotation vector (axis scaled by angle, radians)

    Returns:
        the unit quaternion ``[x, y, z, w]`` with ``quat2r(q) == expm(crossMx(a))``
    """
    q = np.zeros(4)
    angle = np.sqrt(a[0] * a[0] + a[1] * a[1] + a[2] * a[2])
    if angle < 1e-12:
        # second-order expansion of sin(angle/2)/angle
        scale = 0.5 - angle * angle / 48.0
    else:
        scale = np.sin(0.5 * angle) / angle
    q[0] = scale * a[0]
    q[1] = scale * a[1]
    q[2] = scale * a[2]
    q[3] = np.cos(0.5 * angle)
    return q


@njit
def leftJacobianInverse(phi: NDArray[np.double]) -> NDArray[np.double]:
    """
    Inverse of the SO(3) left Jacobian

    The translation of ``exp(xi^)`` is ``J(phi) @ rho``, so ``rho`` is recovered
    from a translation by this matrix.

    Args:
        phi: a rotation vector

    Returns:
        the 3x3 matrix ``I - 0.5 [phi]x + c [phi]x^2``
    """
    Phi = crossMx(phi)
    angle = np.sqrt(phi[0] * phi[0] + phi[1] * phi[1] + phi[2] * phi[2])
    if angle < 1e-4:
        c = 1.0 / 12.0 + angle * angle / 720.0
    else:
        c = 1.0 / (angle * angle) - (1.0 + np.cos(angle)) / (
            2.0 * angle * np.sin(angle)
        )
    return np.eye(3) - 0.5 * Phi + c * (Phi @ Phi)


@njit
def boxTimes(T: NDArray[np.double]) -> NDArray[np.double]:
    """
    Adjoint of a 4x4 transformation for the ``[rho; phi]`` tangent ordering

    The adjoint satisfies ``T exp(xi^) = exp((boxTimes(T) @ xi)^) T``.

    Args:
        T: a 4x4 homogeneous transformation matrix

    Returns:
        the 6x6 matrix ``[[C, [t]x C], [0, C]]``
    """
    C = np.ascontiguousarray(T[:3, :3])
    tC = crossMx(np.ascontiguousarray(T[:3, 3])) @ C
    ad = np.zeros((6, 6))
    ad[:3, :3] = C
    ad[:3, 3:] = tC
    ad[3:, 3:] = C
    return ad


@njit
def transformation(C: NDArray[np.double], t: NDArray[np.double]) -> NDArray[np.double]:
    """
    Assemble a 4x4 transformation from a rotation matrix and a translation
    """
    T = np.eye(4)
    T[:3, :3] = C
    T[:3, 3] = t
    return T


@njit
def invertTransformation(T: NDArray[np.double]) -> NDArray[np.double]:
    """
    Closed-form inverse of a 4x4 rigid transformation
    """
    Ct = np.ascontiguousarray(T[:3, :3].T)
    Tinv = np.eye(4)
    Tinv[:3, :3] = Ct
    Tinv[:3, 3] = -(Ct @ np.ascontiguousarray(T[:3, 3]))
    return Tinv
