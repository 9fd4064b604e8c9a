"""
Differentials
=============

A differential is a lazily-evaluated linear map from the tangent space of an
expression node (the *domain*) into the tangent space of some downstream
quantity (the *range*). Expression nodes describe their local derivatives as
differentials so that long chains ``A o B o C o ...`` are only materialized
once, at the point where a design variable is reached.

The set of shapes is closed:

.. autosummary::
   :nosignatures:

   IdentityDifferential
   NullDifferential
   MatrixDifferential
   ComposedDifferential

Identity and null differentials terminate compositions without allocating a
matrix; :func:`compose` takes those shortcuts automatically. The function
:func:`applyDifferentialToJacobianContainer` turns a differential into a
scoped chain-rule entry on a :class:`~optexpr.jacobians.JacobianContainer`.

Reference
-----------

.. autoclass:: Differential
   :members:

.. autoclass:: IdentityDifferential
.. autoclass:: NullDifferential
.. autoclass:: MatrixDifferential
.. autoclass:: ComposedDifferential

.. autofunction:: compose
.. autofunction:: applyDifferentialToJacobianContainer
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Union

import numpy as np
from numpy.typing import NDArray

from optexpr.jacobians import ChainRuleGuard, JacobianContainer
from optexpr.typing import FloatArray, override

if TYPE_CHECKING:
    from optexpr.designvariables import DesignVariable

logger = logging.getLogger(__name__)

__all__ = [
    "Differential",
    "IdentityDifferential",
    "NullDifferential",
    "MatrixDifferential",
    "ComposedDifferential",
    "compose",
    "applyDifferentialToJacobianContainer",
]


def _checkDimension(dim: object, label: str) -> int:
    if dim is None or not isinstance(dim, (int, np.integer)) or not dim > 0:
        raise ValueError(f"{label} dimension must be a positive integer, got {dim!r}")
    return int(dim)


class Differential(ABC):
    """
    Base class for differentials

    Args:
        domainDimension: the dimension of the tangent vectors the map accepts
        rangeDimension: the dimension of the tangent vectors the map produces

    Raises:
        ValueError: if either dimension is undefined or not positive
    """

    def __init__(self, domainDimension: int, rangeDimension: int) -> None:
        self._domainDimension = _checkDimension(domainDimension, "Domain")
        self._rangeDimension = _checkDimension(rangeDimension, "Range")

    def __repr__(self) -> str:
        return "<{}: {} -> {}>".format(
            self.__class__.__name__, self._domainDimension, self._rangeDimension
        )

    @property
    def domainDimension(self) -> int:
        return self._domainDimension

    @property
    def rangeDimension(self) -> int:
        return self._rangeDimension

    @property
    def isIdentity(self) -> bool:
        return False

    @property
    def isNull(self) -> bool:
        return False

    @abstractmethod
    def applyInto(
        self, tangentVector: FloatArray, result: NDArray[np.double]
    ) -> NDArray[np.double]:
        """
        Write the image of a tangent vector into ``result``

        Args:
            tangentVector: a vector with :attr:`domainDimension` entries
            result: a vector with :attr:`rangeDimension` entries

        Returns:
            ``result``
        """
        pass

    def applyBasisVectorInto(
        self, index: int, result: NDArray[np.double]
    ) -> NDArray[np.double]:
        """
        Write the image of the ``index``-th standard basis vector into ``result``

        Raises:
            IndexError: if ``index`` is outside the domain
        """
        if not 0 <= index < self._domainDimension:
            raise IndexError(
                f"Basis index {index} is outside the {self._domainDimension}-dim domain"
            )
        basis = np.zeros(self._domainDimension)
        basis[index] = 1.0
        return self.applyInto(basis, result)

    def convertIntoMatrix(
        self,
        chainRule: Union[None, NDArray[np.double]],
        result: NDArray[np.double],
    ) -> NDArray[np.double]:
        """
        Materialize the differential

        Args:
            chainRule: a matrix premultiplying the differential, or ``None``
            result: the output matrix with ``chainRule.shape[0]`` (or
                :attr:`rangeDimension`) rows and :attr:`domainDimension` columns

        Returns:
            ``result``
        """
        local = np.zeros((self._rangeDimension, self._domainDimension))
        column = np.zeros(self._rangeDimension)
        for ix in range(self._domainDimension):
            local[:, ix] = self.applyBasisVectorInto(ix, column)

        result[...] = local if chainRule is None else chainRule @ local
        return result

    def toMatrix(self) -> NDArray[np.double]:
        """
        Returns:
            the ``[range x domain]`` matrix of the differential
        """
        return self.convertIntoMatrix(
            None, np.zeros((self._rangeDimension, self._domainDimension))
        )

    def addToJacobianContainer(
        self,
        jc: JacobianContainer,
        designVariable: DesignVariable,
        jacobian: Union[None, NDArray[np.double]] = None,
    ) -> None:
        """
        Add the differential to a design variable's Jacobian block

        Args:
            jc: the container; its pending chain rule is applied
            designVariable: the variable whose tangent space is the domain (or,
                with ``jacobian``, the domain of ``jacobian``)
            jacobian: a preceding ``[domain x minimalDimensions]`` Jacobian of
                this differential's domain with respect to the variable
        """
        block = self.toMatrix()
        if jacobian is not None:
            block = block @ jacobian
        jc.add(designVariable, block)


class IdentityDifferential(Differential):
    """
    The identity map; passes tangent vectors through unchanged
    """

    def __init__(self, dimension: int) -> None:
        super().__init__(dimension, dimension)

    @property  # type: ignore[misc]
    @override
    def isIdentity(self) -> bool:
        return True

    @override
    def applyInto(
        self, tangentVector: FloatArray, result: NDArray[np.double]
    ) -> NDArray[np.double]:
        result[:] = tangentVector
        return result

    @override
    def convertIntoMatrix(
        self,
        chainRule: Union[None, NDArray[np.double]],
        result: NDArray[np.double],
    ) -> NDArray[np.double]:
        result[...] = np.eye(self._domainDimension) if chainRule is None else chainRule
        return result

    @override
    def addToJacobianContainer(
        self,
        jc: JacobianContainer,
        designVariable: DesignVariable,
        jacobian: Union[None, NDArray[np.double]] = None,
    ) -> None:
        jc.add(designVariable, jacobian)


class NullDifferential(Differential):
    """
    The zero map; contributes nothing to a Jacobian container
    """

    def __init__(self, domainDimension: int, rangeDimension: int = -1) -> None:
        if rangeDimension == -1:
            rangeDimension = domainDimension
        super().__init__(domainDimension, rangeDimension)

    @property  # type: ignore[misc]
    @override
    def isNull(self) -> bool:
        return True

    @override
    def applyInto(
        self, tangentVector: FloatArray, result: NDArray[np.double]
    ) -> NDArray[np.double]:
        result[:] = 0.0
        return result

    @override
    def convertIntoMatrix(
        self,
        chainRule: Union[None, NDArray[np.double]],
        result: NDArray[np.double],
    ) -> NDArray[np.double]:
        result[...] = 0.0
        return result

    @override
    def addToJacobianContainer(
        self,
        jc: JacobianContainer,
        designVariable: DesignVariable,
        jacobian: Union[None, NDArray[np.double]] = None,
    ) -> None:
        pass


class MatrixDifferential(Differential):
    """
    A differential backed by a dense ``[range x domain]`` matrix
    """

    def __init__(self, matrix: FloatArray) -> None:
        mat = np.array(matrix, dtype=np.double, ndmin=2)
        if not mat.ndim == 2:
            raise ValueError(f"Differential matrix must be 2D, got shape {mat.shape}")
        super().__init__(mat.shape[1], mat.shape[0])
        self._matrix = mat

    @property
    def matrix(self) -> NDArray[np.double]:
        return self._matrix

    @override
    def applyInto(
        self, tangentVector: FloatArray, result: NDArray[np.double]
    ) -> NDArray[np.double]:
        result[:] = self._matrix @ np.asarray(tangentVector, dtype=np.double)
        return result

    @override
    def applyBasisVectorInto(
        self, index: int, result: NDArray[np.double]
    ) -> NDArray[np.double]:
        result[:] = self._matrix[:, index]
        return result

    @override
    def convertIntoMatrix(
        self,
        chainRule: Union[None, NDArray[np.double]],
        result: NDArray[np.double],
    ) -> NDArray[np.double]:
        result[...] = self._matrix if chainRule is None else chainRule @ self._matrix
        return result


class ComposedDifferential(Differential):
    """
    A local linear map followed by another differential, ``next o local``

    Args:
        local: the local map; either a ``[next.domain x domain]`` matrix or a
            callable accepting a domain tangent vector and returning a
            ``next.domainDimension`` vector
        domainDimension: the dimension of the local map's domain; taken from the
            matrix when ``local`` is a matrix
        next: the differential applied after ``local``
    """

    def __init__(
        self,
        local: Union[FloatArray, Callable[[NDArray[np.double]], NDArray[np.double]]],
        domainDimension: int,
        next: Differential,
    ) -> None:
        if callable(local):
            self._apply = local
            self._matrix = None
        else:
            self._matrix = np.array(local, dtype=np.double, ndmin=2)
            if not self._matrix.shape[0] == next.domainDimension:
                raise ValueError(
                    f"Local map with shape {self._matrix.shape} cannot feed a "
                    f"differential with a {next.domainDimension}-dim domain"
                )
            domainDimension = self._matrix.shape[1]
            self._apply = lambda v: self._matrix @ v  # type: ignore[operator]

        super().__init__(domainDimension, next.rangeDimension)
        self._next = next

    @property
    def next(self) -> Differential:
        return self._next

    @override
    def applyInto(
        self, tangentVector: FloatArray, result: NDArray[np.double]
    ) -> NDArray[np.double]:
        intermediate = np.asarray(
            self._apply(np.asarray(tangentVector, dtype=np.double)), dtype=np.double
        )
        return self._next.applyInto(intermediate, result)

    @override
    def convertIntoMatrix(
        self,
        chainRule: Union[None, NDArray[np.double]],
        result: NDArray[np.double],
    ) -> NDArray[np.double]:
        if self._matrix is None:
            return super().convertIntoMatrix(chainRule, result)

        # Materialize the tail once and multiply, rather than column by column
        nextMatrix = self._next.convertIntoMatrix(
            chainRule,
            np.zeros(
                (
                    self._next.rangeDimension if chainRule is None else chainRule.shape[0],
                    self._next.domainDimension,
                )
            ),
        )
        result[...] = nextMatrix @ self._matrix
        return result


def compose(differential: Differential, matrix: FloatArray) -> Differential:
    """
    Compose a differential with a preceding local Jacobian, ``differential o matrix``

    Identity and null differentials are handled without building a
    :class:`ComposedDifferential`.

    Args:
        differential: the downstream differential
        matrix: a ``[differential.domain x newDomain]`` matrix

    Returns:
        the composed differential
    """
    mat = np.array(matrix, dtype=np.double, ndmin=2)
    if not mat.shape[0] == differential.domainDimension:
        raise ValueError(
            f"Cannot compose a {mat.shape} matrix into a differential with a "
            f"{differential.domainDimension}-dim domain"
        )

    if differential.isNull:
        return NullDifferential(mat.shape[1], differential.rangeDimension)
    if differential.isIdentity:
        return MatrixDifferential(mat)
    if isinstance(differential, MatrixDifferential):
        return MatrixDifferential(differential.matrix @ mat)
    return ComposedDifferential(mat, mat.shape[1], differential)


def applyDifferentialToJacobianContainer(
    jc: JacobianContainer, differential: Differential, domainDimension: int
) -> ChainRuleGuard:
    """
    Install a differential as a scoped chain-rule entry

    .. code-block:: python

       with applyDifferentialToJacobianContainer(jc, diff, child.tangentDimension):
           child.evaluateJacobians(jc)

    Identity differentials leave the stack untouched. A null differential
    installs a zero matrix; callers that can skip the nested evaluation should
    do so instead (see
    :func:`~optexpr.expressions.ExpressionNode.evaluateJacobiansWithDifferential`).

    Args:
        jc: the Jacobian container
        differential: the differential
        domainDimension: the tangent dimension of the node that will be evaluated
            within the scope

    Returns:
        the guard

    Raises:
        ValueError: if ``domainDimension`` is undefined or does not match the
            differential
    """
    domainDimension = _checkDimension(domainDimension, "Domain")
    if not domainDimension == differential.domainDimension:
        raise ValueError(
            f"Differential domain ({differential.domainDimension}) does not match "
            f"the node dimension ({domainDimension})"
        )

    if differential.isIdentity:
        return ChainRuleGuard(jc, None)

    chainRule = None if jc.chainRuleEmpty() else jc.chainRuleMatrix()
    rows = differential.rangeDimension if chainRule is None else chainRule.shape[0]
    if chainRule is not None and not chainRule.shape[1] == differential.rangeDimension:
        raise ValueError(
            f"Differential range ({differential.rangeDimension}) does not match the "
            f"pending chain rule {chainRule.shape}"
        )
    matrix = differential.convertIntoMatrix(chainRule, np.zeros((rows, domainDimension)))
    return ChainRuleGuard(jc, matrix)
