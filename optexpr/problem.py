"""
Optimization Problem
====================

An :class:`OptimizationProblem` collects the design variables and error terms
that define an objective. Design variables are stored by reference; adding an
error term also imports the variables it depends on.

.. code-block:: python

   x = EuclideanPoint([0.0, 0.0, 0.0], name="x")
   problem = OptimizationProblem()
   problem.addErrorTerms(ExpressionErrorTerm(x - target))

.. autosummary::
   :nosignatures:

   OptimizationProblem

Reference
-----------

.. autoclass:: OptimizationProblem
   :members:
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Union

from rich.columns import Columns
from rich.panel import Panel

from optexpr import console, util
from optexpr.designvariables import DesignVariable
from optexpr.errorterms import ErrorTerm

logger = logging.getLogger(__name__)

__all__ = ["OptimizationProblem"]


class OptimizationProblem:
    """
    Defines the design variables and error terms of an optimization problem
    """

    def __init__(self) -> None:
        # design variables and error terms are stored in lists for add/remove
        self._designVariables: list[DesignVariable] = []
        self._errorTerms: list[ErrorTerm] = []

    def __repr__(self) -> str:
        out = f"<{self.__class__.__name__}:"
        out += "\n  {!s} design variables,".format(len(self._designVariables))
        out += "\n  {!s} error terms,".format(len(self._errorTerms))
        out += "\n>"
        return out

    # -------------------------------------------
    # Design variables

    def addDesignVariables(
        self, designVariable: Union[DesignVariable, Sequence[DesignVariable]]
    ) -> None:
        """
        Add one or more design variables to the problem

        Args:
            designVariable: one or more variables to add. Variables are stored by
                reference (they are not copied).

        Raises:
            TypeError: if any of the inputs are not :class:`DesignVariable` objects
        """
        for dv in util.toList(designVariable):
            if not isinstance(dv, DesignVariable):
                raise TypeError("Can only add DesignVariable objects")

            if dv in self._designVariables:
                logger.debug(f"Skipping add {dv}; it has already been added")
                continue

            self._designVariables.append(dv)

    def rmDesignVariables(
        self, designVariable: Union[DesignVariable, Sequence[DesignVariable]]
    ) -> None:
        """
        Remove one or more design variables from the problem
        """
        for dv in util.toList(designVariable):
            try:
                self._designVariables.remove(dv)
            except ValueError:
                logger.debug(f"Could not remove design variable {dv}")

    def designVariables(self) -> list[DesignVariable]:
        return list(self._designVariables)

    @property
    def numDesignVariables(self) -> int:
        return len(self._designVariables)

    # -------------------------------------------
    # Error terms

    def addErrorTerms(self, errorTerm: Union[ErrorTerm, Sequence[ErrorTerm]]) -> None:
        """
        Add one or more error terms and import their design variables

        Raises:
            TypeError: if any of the inputs are not :class:`ErrorTerm` objects
        """
        for term in util.toList(errorTerm):
            if not isinstance(term, ErrorTerm):
                raise TypeError("Can only add ErrorTerm objects")

            if term in self._errorTerms:
                logger.debug(f"Error term {term} has already been added")
                continue

            self._errorTerms.append(term)
            self.addDesignVariables(term.designVariables())

    def rmErrorTerms(self, errorTerm: Union[ErrorTerm, Sequence[ErrorTerm]]) -> None:
        """
        Remove one or more error terms; their design variables are kept
        """
        for term in util.toList(errorTerm):
            try:
                self._errorTerms.remove(term)
            except ValueError:
                logger.debug(f"Could not remove error term {term}")

    def errorTerms(self) -> list[ErrorTerm]:
        return list(self._errorTerms)

    @property
    def numErrorTerms(self) -> int:
        return len(self._errorTerms)

    # -------------------------------------------
    # Printing

    def printDesignVariables(self) -> None:
        """
        Print design variables to the screen
        """
        columns = Columns(title="Design Variables")
        for dv in self._designVariables:
            name = dv.name if dv.name else dv.__class__.__name__
            if dv.columnBase < 0:
                indices = f"Dim: {dv.minimalDimensions}"
            elif dv.minimalDimensions <= 1:
                indices = f"Index: {dv.columnBase}"
            else:
                indices = f"Indices: {dv.columnBase} - {dv.columnBase + dv.minimalDimensions - 1}"
            if not dv.isActive:
                indices += " [i](inactive)[/i]"
            columns.add_renderable(Panel(indices, title=f"[b]{name}[/b]"))
        console.print(columns)

    def printErrorTerms(self) -> None:
        """
        Print error terms to the screen
        """
        columns = Columns(title="Error Terms")
        for term in self._errorTerms:
            name = term.__class__.__name__.replace("ErrorTerm", "") or "ErrorTerm"
            text = f"Dim: {term.dimension}\n{term.getMEstimatorName()}"
            columns.add_renderable(Panel(text, title=f"[b]{name}[/b]"))
        console.print(columns)
