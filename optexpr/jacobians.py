"""
Jacobian Container
==================

A :class:`JacobianContainer` accumulates partial-derivative blocks for a single
evaluation of an error or expression. Each design variable owns a block of
shape ``[rows x minimalDimensions]``; contributions arriving through different
paths of the expression graph are summed.

The container also holds a *chain-rule stack*. When an expression node
back-propagates into a child, it installs its local derivative on the stack;
every block the child adds is then premultiplied by the product of all pending
derivatives. The stack is manipulated through a scoped guard so that the
pending matrix is always removed, even when the nested evaluation raises:

.. code-block:: python

   jc = JacobianContainer(3)
   with jc.apply(localJacobian):
       child.evaluateJacobians(jc)

.. autosummary::
   :nosignatures:

   JacobianContainer
   ChainRuleGuard

Reference
-----------

.. autoclass:: JacobianContainer
   :members:

.. autoclass:: ChainRuleGuard
   :members:
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Union

import numpy as np
from numpy.typing import NDArray

from optexpr.typing import ChainRule

if TYPE_CHECKING:
    from optexpr.designvariables import DesignVariable

logger = logging.getLogger(__name__)

__all__ = ["JacobianContainer", "ChainRuleGuard"]


class ChainRuleGuard:
    """
    Context manager that pushes a matrix onto a container's chain-rule stack on
    entry and pops it on exit

    Args:
        container: the Jacobian container
        matrix: the complete new top of the stack (already premultiplied by the
            previous top), or ``None`` to leave the stack untouched
    """

    def __init__(
        self, container: JacobianContainer, matrix: Union[None, NDArray[np.double]]
    ) -> None:
        self._container = container
        self._matrix = matrix
        self._pushed = False

    def __enter__(self) -> JacobianContainer:
        if self._matrix is not None:
            self._container._push(self._matrix)
            self._pushed = True
        return self._container

    def __exit__(self, *args) -> None:
        if self._pushed:
            self._container._pop()
            self._pushed = False


class JacobianContainer:
    """
    Accumulates Jacobian blocks for a set of design variables

    Args:
        rows: the number of rows in every block, i.e., the dimension of the
            quantity being differentiated

    Raises:
        ValueError: if ``rows`` is not positive
    """

    def __init__(self, rows: int) -> None:
        if not int(rows) > 0:
            raise ValueError(f"rows must be positive, got {rows}")

        self._rows = int(rows)
        self._blocks: dict[DesignVariable, NDArray[np.double]] = {}
        self._chainRule: list[NDArray[np.double]] = []

    def __repr__(self) -> str:
        out = f"<{self.__class__.__name__}:"
        out += "\n  rows = {!s},".format(self._rows)
        out += "\n  chain-rule depth = {!s},".format(len(self._chainRule))
        for dv, block in self._blocks.items():
            out += "\n  {!s}: {!s},".format(
                dv.name or dv.__class__.__name__, block.shape
            )
        out += "\n>"
        return out

    @property
    def rows(self) -> int:
        """
        The number of rows in each block
        """
        return self._rows

    # -------------------------------------------
    # Chain rule stack

    def chainRuleEmpty(self) -> bool:
        """
        Whether or not the chain-rule stack is empty
        """
        return len(self._chainRule) == 0

    def chainRuleMatrix(self) -> NDArray[np.double]:
        """
        The pending chain-rule matrix (top of the stack)

        Raises:
            RuntimeError: if the stack is empty
        """
        if self.chainRuleEmpty():
            raise RuntimeError("The chain-rule stack is empty")
        return self._chainRule[-1]

    def _push(self, matrix: NDArray[np.double]) -> None:
        if not matrix.ndim == 2 or not matrix.shape[0] == self._rows:
            raise ValueError(
                f"Chain-rule matrix must have {self._rows} rows, got shape {matrix.shape}"
            )
        self._chainRule.append(matrix)

    def _pop(self) -> None:
        self._chainRule.pop()

    def _premultiply(self, factor: ChainRule) -> NDArray[np.double]:
        """
        Premultiply a local derivative (or scalar) by the pending chain rule
        """
        if np.isscalar(factor) or np.ndim(factor) == 0:
            scale = float(factor)  # type: ignore[arg-type]
            if self.chainRuleEmpty():
                return scale * np.eye(self._rows)
            return scale * self._chainRule[-1]

        matrix = np.asarray(factor, dtype=np.double)
        if matrix.ndim == 1:
            matrix = matrix.reshape((1, -1))
        if self.chainRuleEmpty():
            return matrix.copy()

        top = self._chainRule[-1]
        if not top.shape[1] == matrix.shape[0]:
            raise ValueError(
                f"Cannot chain a {matrix.shape} derivative onto a pending "
                f"{top.shape} matrix"
            )
        return top @ matrix

    def apply(self, factor: ChainRule) -> ChainRuleGuard:
        """
        Install a chain-rule factor for the duration of a ``with`` block

        Args:
            factor: a matrix whose row count matches the current column count of
                the pending chain rule (or :attr:`rows` when the stack is empty),
                or a scalar multiplier

        Returns:
            a guard that pushes the premultiplied factor on entry and pops it on
            exit
        """
        return ChainRuleGuard(self, self._premultiply(factor))

    # -------------------------------------------
    # Accumulation

    def add(
        self, designVariable: DesignVariable, block: Union[None, ChainRule] = None
    ) -> None:
        """
        Add a Jacobian block for a design variable

        The block is premultiplied by the pending chain rule before it is summed
        into the accumulator. Inactive design variables are ignored.

        Args:
            designVariable: the variable the block is differentiated with respect to
            block: the partial derivative of the current node with respect to the
                variable's tangent space. ``None`` is treated as identity.

        Raises:
            ValueError: if the resulting block does not have shape
                ``[rows x minimalDimensions]``
        """
        if not designVariable.isActive:
            return

        if block is None:
            if self.chainRuleEmpty():
                if not self._rows == designVariable.minimalDimensions:
                    raise ValueError(
                        f"Identity block for {designVariable!r} requires "
                        f"{designVariable.minimalDimensions} rows, container has "
                        f"{self._rows}"
                    )
                contribution = np.eye(self._rows)
            else:
                contribution = self._chainRule[-1]
        else:
            contribution = self._premultiply(block)

        shape = (self._rows, designVariable.minimalDimensions)
        if not contribution.shape == shape:
            raise ValueError(
                f"Jacobian block for {designVariable!r} has shape "
                f"{contribution.shape}, expected {shape}"
            )

        if designVariable in self._blocks:
            self._blocks[designVariable] += contribution
        else:
            self._blocks[designVariable] = np.array(contribution, dtype=np.double)

    def Jacobian(self, designVariable: DesignVariable) -> NDArray[np.double]:
        """
        Get the accumulated block for a design variable

        Returns:
            the block; zeros if nothing has been added for the variable
        """
        if designVariable in self._blocks:
            return self._blocks[designVariable]
        return np.zeros((self._rows, designVariable.minimalDimensions))

    def designVariables(self) -> list[DesignVariable]:
        """
        The variables with accumulated blocks, in order of first contribution
        """
        return list(self._blocks)

    def clear(self) -> None:
        """
        Remove all accumulated blocks; the chain-rule stack is not modified
        """
        self._blocks.clear()

    def isFinite(self) -> bool:
        """
        Whether or not every accumulated entry is finite
        """
        return all(np.all(np.isfinite(block)) for block in self._blocks.values())

    def checkFinite(self) -> None:
        """
        Raises:
            RuntimeError: if any accumulated entry is NaN or infinite
        """
        for dv, block in self._blocks.items():
            if not np.all(np.isfinite(block)):
                raise RuntimeError(f"Jacobian block for {dv!r} is not finite:\n{block}")

    def asDenseMatrix(
        self, designVariables: Union[None, Sequence[DesignVariable]] = None
    ) -> NDArray[np.double]:
        """
        Stack the accumulated blocks horizontally

        Args:
            designVariables: the variables (and their order) that define the
                columns. Variables without a block contribute zero columns and
                blocks for unlisted variables are dropped. If ``None``, the
                container's own variables are ordered by their
                :attr:`~optexpr.designvariables.DesignVariable.columnBase`.

        Returns:
            the ``[rows x sum(minimalDimensions)]`` Jacobian
        """
        if designVariables is None:
            order = dict((dv, ix) for ix, dv in enumerate(self._blocks))
            designVariables = sorted(
                self._blocks, key=lambda dv: (dv.columnBase, order[dv])
            )

        if len(designVariables) == 0:
            return np.zeros((self._rows, 0))

        return np.hstack([self.Jacobian(dv) for dv in designVariables])
