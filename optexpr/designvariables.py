"""
Design Variables
================

A design variable is a mutable block of parameters that the optimizer is
allowed to change. The value may live on a manifold (e.g., a unit quaternion)
while updates are always expressed in the *minimal* tangent space of the
variable,

.. math::
   x \\leftarrow x \\boxplus \\delta x, \\qquad \\dim(\\delta x) = \\text{minimalDimensions}

Every update first snapshots the current value so that exactly one
:func:`~DesignVariable.revert` undoes it. The undo is single-level; reverting
twice in a row restores the same snapshot twice, i.e., the second call is a
no-op.

.. autosummary::
   :nosignatures:

   DesignVariable

The concrete design variables are also expression leaves and are defined
alongside the expression type they produce:

* :class:`~optexpr.expressions.scalar.Scalar`
* :class:`~optexpr.expressions.vector.DesignVariableVector`
* :class:`~optexpr.expressions.vector.EuclideanPoint`
* :class:`~optexpr.expressions.vector.MappedEuclideanPoint`
* :class:`~optexpr.expressions.rotation.RotationQuaternion`
* :class:`~optexpr.expressions.homogeneous.HomogeneousPoint`
* :class:`~optexpr.expressions.matrix.MatrixTransformation`

Reference
-----------

.. autoclass:: DesignVariable
   :members:
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Union

import numpy as np
from numpy.typing import NDArray

from optexpr.typing import FloatArray

logger = logging.getLogger(__name__)

__all__ = ["DesignVariable"]


class DesignVariable(ABC):
    """
    Base class for all design variables

    Args:
        name: an optional name, used in printouts

    Subclasses implement :func:`_plus` (the box-plus update), :func:`_getValue`
    and :func:`_setValue`, and the :attr:`minimalDimensions` property.
    """

    def __init__(self, name: str = "") -> None:
        #: str: a name for the variable, used in printouts
        self.name = name

        self._isActive = True
        self._blockIndex = -1
        self._columnBase = -1

        # single-level undo slot; filled by _snapshot()
        self._previousValue: object = None

    def __repr__(self) -> str:
        return "<{}: name={!r}, active={}, columnBase={}>".format(
            self.__class__.__name__, self.name, self._isActive, self._columnBase
        )

    # -------------------------------------------
    # Interface

    @property
    @abstractmethod
    def minimalDimensions(self) -> int:
        """
        The dimension of the tangent space used by :func:`update`
        """
        pass

    @abstractmethod
    def _getValue(self) -> object:
        """
        Returns:
            a copy of the current value in its native representation
        """
        pass

    @abstractmethod
    def _setValue(self, value: object) -> None:
        """
        Overwrite the current value without touching the undo slot
        """
        pass

    @abstractmethod
    def _plus(self, dx: NDArray[np.double]) -> None:
        """
        Apply the box-plus update in place

        Args:
            dx: a tangent vector with :attr:`minimalDimensions` entries
        """
        pass

    # -------------------------------------------
    # Update and revert

    def _snapshot(self) -> None:
        self._previousValue = self._getValue()

    def update(self, dx: Union[float, FloatArray]) -> None:
        """
        Update the variable with a tangent-space step

        The current value is stored first so that :func:`revert` can undo the
        step.

        Args:
            dx: the step, with exactly :attr:`minimalDimensions` entries

        Raises:
            ValueError: if ``dx`` has the wrong number of entries
        """
        step = np.asarray(dx, dtype=np.double).ravel()
        if not step.size == self.minimalDimensions:
            raise ValueError(
                f"Update of {self!r} requires {self.minimalDimensions} values, "
                f"got {step.size}"
            )
        self._snapshot()
        self._plus(step)

    def revert(self) -> None:
        """
        Restore the value stored by the most recent :func:`update` or
        :func:`setParameters` call

        Calling ``revert`` again without an intervening update is a no-op.
        """
        if self._previousValue is None:
            logger.debug(f"Nothing to revert for {self!r}")
            return
        self._setValue(self._previousValue)

    def getParameters(self) -> object:
        """
        Returns:
            a copy of the current value in its native representation
        """
        return self._getValue()

    def setParameters(self, value: object) -> None:
        """
        Overwrite the current value; :func:`revert` restores the old one

        Args:
            value: the new value in its native representation
        """
        self._snapshot()
        self._setValue(value)

    def minimalDifference(self, xHat: object) -> NDArray[np.double]:
        """
        Tangent-space difference between the current value and ``xHat``

        Args:
            xHat: a value in the native representation

        Returns:
            the tangent vector ``dx`` such that ``xHat [+] dx`` equals the current
            value. The default treats the value as a Euclidean vector.
        """
        return np.ravel(np.asarray(self._getValue(), dtype=np.double)) - np.ravel(
            np.asarray(xHat, dtype=np.double)
        )

    # -------------------------------------------
    # Bookkeeping used by the problem manager

    @property
    def isActive(self) -> bool:
        """
        Whether or not the variable is optimized; inactive variables are ignored
        by Jacobian containers
        """
        return self._isActive

    def setActive(self, active: bool) -> None:
        self._isActive = bool(active)

    @property
    def blockIndex(self) -> int:
        """
        The block number of this variable in a block-structured Hessian; -1 if
        unassigned
        """
        return self._blockIndex

    @blockIndex.setter
    def blockIndex(self, index: int) -> None:
        self._blockIndex = int(index)

    @property
    def columnBase(self) -> int:
        """
        The offset of this variable within the stacked gradient and Jacobian;
        -1 if unassigned
        """
        return self._columnBase

    @columnBase.setter
    def columnBase(self, index: int) -> None:
        self._columnBase = int(index)
