"""
Expressions
===========

Expressions are directed acyclic graphs of :class:`ExpressionNode` objects. The
leaves are constants or design variables; the interior nodes are operations
such as sums, products, rotations, and projections. Nodes only reference
children that already exist, so the graph cannot contain cycles, and a child
may be shared by several parents.

Every node supports two passes:

1. :func:`ExpressionNode.evaluate` computes the value, caching the child values
   and any intermediate quantities needed for derivatives.
2. :func:`ExpressionNode.evaluateJacobians` back-propagates derivatives into a
   :class:`~optexpr.jacobians.JacobianContainer`. Each operation installs its
   local derivative with respect to a child on the container's chain-rule stack
   and asks the child to continue; design variables at the leaves add the
   pending chain rule to their Jacobian block.

The Jacobian pass uses the values cached by the latest forward pass; always
call ``evaluate`` first.

.. autosummary::
   :nosignatures:

   ExpressionNode
   ConstantNode

Node families are defined in the submodules:

.. autosummary::

   ~optexpr.expressions.scalar
   ~optexpr.expressions.vector
   ~optexpr.expressions.rotation
   ~optexpr.expressions.transformation
   ~optexpr.expressions.homogeneous
   ~optexpr.expressions.matrix
   ~optexpr.expressions.quaternion

Analytic Jacobians can be verified against central differences with
:func:`checkJacobians`.

Reference
-----------

.. autoclass:: ExpressionNode
   :members:

.. autoclass:: ConstantNode
   :members:

.. autofunction:: numericJacobians
.. autofunction:: checkJacobians
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING, Union

import numpy as np
from numpy.typing import NDArray

from optexpr import console, numerics, util
from optexpr.differentials import Differential, applyDifferentialToJacobianContainer
from optexpr.jacobians import JacobianContainer
from optexpr.typing import ChainRule

if TYPE_CHECKING:
    from optexpr.designvariables import DesignVariable

logger = logging.getLogger(__name__)

__all__ = [
    "ExpressionNode",
    "ConstantNode",
    "numericJacobians",
    "checkJacobians",
    # submodules
    "homogeneous",
    "matrix",
    "quaternion",
    "rotation",
    "scalar",
    "transformation",
    "vector",
]


class ExpressionNode(ABC):
    """
    Base class for all expression nodes

    Args:
        children: the operand nodes of this node

    Operations implement :func:`_evaluate`, which combines child values into
    this node's value, and :func:`_evaluateJacobians`, which forwards the local
    derivative with respect to each child.
    """

    def __init__(self, *children: ExpressionNode) -> None:
        for child in children:
            if not isinstance(child, ExpressionNode):
                raise TypeError(
                    f"{self.__class__.__name__} operands must be expression nodes, "
                    f"got {type(child).__name__}"
                )

        self._children: tuple[ExpressionNode, ...] = children

        #: the values of the children from the latest forward evaluation
        self._childValues: tuple = ()

        #: the value from the latest forward evaluation
        self._value: object = None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"

    # -------------------------------------------
    # Interface

    @property
    @abstractmethod
    def tangentDimension(self) -> int:
        """
        The dimension of the tangent space of this node's value
        """
        pass

    def _evaluate(self, *childValues: object) -> object:
        """
        Combine child values into this node's value; operations take one
        positional argument per child

        Leaves override :func:`evaluate` instead.
        """
        raise NotImplementedError(
            f"{self.__class__.__name__} does not define a forward evaluation"
        )

    @abstractmethod
    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        """
        Back-propagate the pending chain rule in ``jc`` through this node
        """
        pass

    # -------------------------------------------
    # Evaluation

    def evaluate(self) -> object:
        """
        Evaluate the node

        Returns:
            the value of the expression at the current design variable values
        """
        self._childValues = tuple(child.evaluate() for child in self._children)
        self._value = self._evaluate(*self._childValues)
        return self._value

    def evaluateJacobians(
        self, jc: JacobianContainer, applyChainRule: Union[None, ChainRule] = None
    ) -> None:
        """
        Back-propagate derivatives into a Jacobian container

        Args:
            jc: the container
            applyChainRule: an optional matrix (or scalar) installed on the
                container's chain-rule stack for the duration of the call
        """
        if applyChainRule is None:
            self._evaluateJacobians(jc)
        else:
            with jc.apply(applyChainRule):
                self._evaluateJacobians(jc)

    def evaluateJacobiansWithDifferential(
        self, jc: JacobianContainer, differential: Differential
    ) -> None:
        """
        Back-propagate derivatives through a differential

        Null differentials skip the nested evaluation entirely and identity
        differentials do not touch the chain-rule stack.

        Args:
            jc: the container
            differential: a differential whose domain is this node's tangent
                space

        Raises:
            ValueError: if the differential's domain does not match
                :attr:`tangentDimension`
        """
        if differential.isNull:
            return

        with applyDifferentialToJacobianContainer(jc, differential, self.tangentDimension):
            self._evaluateJacobians(jc)

    def getDesignVariables(self, designVariables: util.OrderedSet) -> None:
        """
        Add every design variable reachable from this node to a set

        Args:
            designVariables: a set-like container with an ``add`` method
        """
        for child in self._children:
            child.getDesignVariables(designVariables)

    def designVariables(self) -> list[DesignVariable]:
        """
        Returns:
            the design variables reachable from this node, in traversal order
        """
        dvs: util.OrderedSet = util.OrderedSet()
        self.getDesignVariables(dvs)
        return list(dvs)

    def tangentDifference(self, a: object, b: object) -> NDArray[np.double]:
        """
        The tangent vector that carries value ``b`` to value ``a``

        The default treats values as Euclidean vectors.
        """
        return np.ravel(np.asarray(a, dtype=np.double)) - np.ravel(
            np.asarray(b, dtype=np.double)
        )

    def _cached(self) -> tuple:
        """
        The child values from the latest forward pass; evaluates if there is none
        """
        if self._value is None:
            self.evaluate()
        return self._childValues


class ConstantNode(ExpressionNode):
    """
    Base for constant leaves, which have no design variables and add nothing
    to Jacobian containers

    Args:
        value: the constant value
    """

    def __init__(self, value: object) -> None:
        ExpressionNode.__init__(self)
        self._value = value

    def evaluate(self) -> object:
        return self._value

    def _evaluateJacobians(self, jc: JacobianContainer) -> None:
        pass

    def getDesignVariables(self, designVariables: util.OrderedSet) -> None:
        pass


# ------------------------------------------------------------------------------
# Jacobian verification


def numericJacobians(
    node: ExpressionNode,
    stepSize: float = 1e-6,
    designVariables: Union[None, Sequence[DesignVariable]] = None,
) -> NDArray[np.double]:
    """
    Compute the Jacobian of an expression via central differences

    Args:
        node: the expression
        stepSize: the tangent-space perturbation size
        designVariables: the variables that define the columns; defaults to the
            active variables reachable from ``node``

    Returns:
        the ``[tangentDimension x sum(minimalDimensions)]`` Jacobian
    """
    if designVariables is None:
        designVariables = [dv for dv in node.designVariables() if dv.isActive]

    if len(designVariables) == 0:
        return np.zeros((node.tangentDimension, 0))

    blocks = numerics.tangentJacobian(
        node.evaluate, designVariables, stepSize, node.tangentDifference
    )
    return np.hstack(blocks)


def checkJacobians(
    node: ExpressionNode,
    stepSize: float = 1e-6,
    rtol: float = 1e-6,
    atol: float = 1e-8,
    printTable: bool = False,
) -> bool:
    """
    Compare the analytic Jacobian of an expression against central differences

    The design variables reachable from ``node`` are perturbed in their tangent
    spaces and restored afterwards. Entries are deemed equal if the absolute
    difference is at most ``atol`` OR the relative difference is at most
    ``rtol`` (see :func:`~optexpr.numerics.compareJacobians`).

    Args:
        node: the expression
        stepSize: the tangent-space perturbation size
        rtol: relative tolerance
        atol: absolute tolerance
        printTable: whether or not to print a table with the comparison data

    Returns:
        True if the analytic and numeric Jacobians are equal
    """
    dvs = [dv for dv in node.designVariables() if dv.isActive]

    numeric = numericJacobians(node, stepSize, dvs)

    node.evaluate()
    jc = JacobianContainer(node.tangentDimension)
    node.evaluateJacobians(jc)
    analytic = jc.asDenseMatrix(dvs)

    absDiff, _, ok = numerics.compareJacobians(numeric, analytic, rtol, atol)

    if printTable:
        console.print(
            numerics.comparisonTable(
                numeric,
                analytic,
                numerics.tangentColumnNames(dvs),
                rtol,
                atol,
                title=node.__class__.__name__,
            )
        )

    equal = bool(np.all(ok))
    if not equal:
        logger.debug(
            f"Jacobian mismatch for {node!r}: max abs err = {np.max(np.abs(absDiff)):.4e}"
        )
    return equal
