"""
Numerics
========

Central-difference approximations of Jacobians with respect to design
variables. Perturbations are applied in each variable's tangent space through
:func:`~optexpr.designvariables.DesignVariable.update` and undone with
:func:`~optexpr.designvariables.DesignVariable.revert`, so the variables are
left untouched when the functions return.

These routines are meant for verifying analytic Jacobians; they are never used
to compute production gradients.

Reference
-----------

.. autosummary::
   tangentJacobian
   compareJacobians
   comparisonTable

.. autofunction:: tangentJacobian
.. autofunction:: compareJacobians
.. autofunction:: comparisonTable
"""
import logging
from collections.abc import Sequence
from typing import Callable, Union

import numpy as np
from numpy.typing import NDArray
from rich.table import Table

from optexpr.designvariables import DesignVariable

logger = logging.getLogger(__name__)


def tangentJacobian(
    func: Callable[[], object],
    designVariables: Sequence[DesignVariable],
    stepSize: float = 1e-6,
    difference: Union[None, Callable[[object, object], NDArray[np.double]]] = None,
) -> list[NDArray[np.double]]:
    """
    Compute the Jacobian of a function with respect to design variables via
    central differences

    For each tangent direction ``i`` of each variable, the variable is updated
    by ``+h e_i`` and ``-h e_i``; the column is
    ``difference(f(+h), f(-h)) / (2 h)``.

    Args:
        func: a function with no arguments that evaluates the quantity of
            interest at the current design variable values
        designVariables: the variables to differentiate with respect to
        stepSize: the perturbation size, ``h``
        difference: maps two function outputs to their tangent-space difference.
            The default subtracts the flattened outputs.

    Returns:
        one ``[outputDimension x minimalDimensions]`` block per design variable

    Raises:
        ValueError: if ``stepSize`` is not positive
    """
    if not stepSize > 0:
        raise ValueError("stepSize must be positive")

    if difference is None:

        def difference(a, b):
            return np.ravel(np.asarray(a, dtype=np.double)) - np.ravel(
                np.asarray(b, dtype=np.double)
            )

    blocks = []
    for dv in designVariables:
        columns = []
        for ix in range(dv.minimalDimensions):
            step = np.zeros(dv.minimalDimensions)

            step[ix] = stepSize
            dv.update(step)
            plus = func()
            dv.revert()

            step[ix] = -stepSize
            dv.update(step)
            minus = func()
            dv.revert()

            columns.append(difference(plus, minus) / (2 * stepSize))

        blocks.append(np.column_stack(columns))

    # Leave cached values consistent with the unperturbed variables
    func()
    return blocks


def compareJacobians(
    numeric: NDArray[np.double],
    analytic: NDArray[np.double],
    rtol: float = 1e-6,
    atol: float = 1e-8,
) -> tuple[NDArray[np.double], NDArray[np.double], NDArray[np.bool_]]:
    """
    Compare a numeric and an analytic Jacobian element by element

    For numeric entries with magnitudes larger than 1e-12, the relative
    difference is computed as ``(numeric - analytic)/numeric``. Entries are
    deemed equal if the absolute difference is at most ``atol`` OR the relative
    difference is at most ``rtol``.

    Returns:
        the absolute differences, relative differences, and a boolean mask of
        the entries deemed equal
    """
    absDiff = numeric - analytic
    relDiff = absDiff.copy()
    nonzero = np.abs(numeric) > 1e-12
    relDiff[nonzero] = absDiff[nonzero] / numeric[nonzero]
    ok = np.logical_or(np.abs(relDiff) <= rtol, np.abs(absDiff) <= atol)
    return absDiff, relDiff, ok


def comparisonTable(
    numeric: NDArray[np.double],
    analytic: NDArray[np.double],
    columnNames: Sequence[str],
    rtol: float = 1e-6,
    atol: float = 1e-8,
    title: str = "",
) -> Table:
    """
    Build a table that compares a numeric and an analytic Jacobian

    Args:
        numeric: the numeric Jacobian
        analytic: the analytic Jacobian
        columnNames: a label for each column
        rtol: relative tolerance
        atol: absolute tolerance
        title: the table title

    Returns:
        a :class:`rich.table.Table` with one row per Jacobian entry
    """
    absDiff, relDiff, ok = compareJacobians(numeric, analytic, rtol, atol)
    table = Table(
        "Status",
        "Row",
        "Col",
        "Variable",
        "Numeric",
        "Analytical",
        "Rel Err",
        "Abs Err",
        title=title or None,
    )
    for r in range(numeric.shape[0]):
        for c in range(numeric.shape[1]):
            rStyle = "i" if abs(relDiff[r, c]) <= rtol else "u"
            aStyle = "i" if abs(absDiff[r, c]) <= atol else "u"
            table.add_row(
                "OK" if ok[r, c] else "ERR",
                f"{r}",
                f"{c}",
                columnNames[c],
                f"{numeric[r,c]:.4e}",
                f"{analytic[r,c]:.4e}",
                f"[{rStyle}]{relDiff[r,c]:.4e}[/{rStyle}]",
                f"[{aStyle}]{absDiff[r,c]:.4e}[/{aStyle}]",
                style="blue" if ok[r, c] else "red",
            )
    return table


def tangentColumnNames(designVariables: Sequence[DesignVariable]) -> list[str]:
    """
    Label each tangent column of a set of design variables, e.g., ``x[0]``
    """
    names = []
    for dv in designVariables:
        name = dv.name or dv.__class__.__name__
        names.extend([f"{name}[{ix}]" for ix in range(dv.minimalDimensions)])
    return names
