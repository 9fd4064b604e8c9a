"""
Error Terms
===========

An error term is one contribution to the objective of an optimization problem.
For the usual least-squares terms, the contribution is the squared Mahalanobis
norm of an error vector,

.. math::
   s = \\vec{e}^T \\mathbf{R}^{-1} \\vec{e},

optionally re-weighted by an :mod:`M-estimator <optexpr.mestimators>`,
:math:`s_w = w(s) \\, s`.

Evaluation follows a fixed order: :func:`ErrorTerm.evaluateError` must run
before any of the Jacobian or Hessian methods, which use the error and the
M-estimator weight cached by the latest evaluation.

.. autosummary::
   :nosignatures:

   ErrorTerm
   ErrorTermFs
   ExpressionErrorTerm
   ScalarNonSquaredErrorTerm

Squared-error accessors
------------------------

Both the raw and the M-estimator-weighted squared error are cached by
:func:`~ErrorTerm.evaluateError`, and each has an explicit accessor:

.. autosummary::

   ErrorTerm.getRawSquaredError
   ErrorTerm.getWeightedSquaredError
   ErrorTerm.getSquaredError

Reference
-----------

.. autoclass:: ErrorTerm
   :members:

.. autoclass:: ErrorTermFs
   :members:

.. autoclass:: ExpressionErrorTerm
   :members:

.. autoclass:: ScalarNonSquaredErrorTerm
   :members:
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Union

import numpy as np
import scipy.linalg
from numpy.typing import NDArray

from optexpr import console, numerics, util
from optexpr.designvariables import DesignVariable
from optexpr.expressions import ExpressionNode
from optexpr.expressions.scalar import ScalarExpression
from optexpr.expressions.vector import VectorExpression
from optexpr.jacobians import JacobianContainer
from optexpr.mestimators import MEstimator, NoMEstimator
from optexpr.typing import FloatArray, override

logger = logging.getLogger(__name__)

__all__ = [
    "ErrorTerm",
    "ErrorTermFs",
    "ExpressionErrorTerm",
    "ScalarNonSquaredErrorTerm",
]


class ErrorTerm(ABC):
    """
    Base class for error terms

    Args:
        dimension: the number of rows in the error (and its Jacobians)
        designVariables: the variables the error depends on
    """

    def __init__(
        self, dimension: int, designVariables: Sequence[DesignVariable] = ()
    ) -> None:
        if not int(dimension) > 0:
            raise ValueError("Error term dimension must be positive")

        self._dimension = int(dimension)
        self._designVariables: list[DesignVariable] = []
        self.setDesignVariables(designVariables)

        self._mEstimator: MEstimator = NoMEstimator()
        self._rawSquaredError = 0.0
        self._weightedSquaredError = 0.0
        self._rowBase = -1

    def __repr__(self) -> str:
        return "<{}: dim={}, {} design variables, {}>".format(
            self.__class__.__name__,
            self._dimension,
            len(self._designVariables),
            self._mEstimator.name,
        )

    @property
    def dimension(self) -> int:
        """
        The number of rows in the error vector
        """
        return self._dimension

    # -------------------------------------------
    # Design variables

    def setDesignVariables(self, designVariables: Sequence[DesignVariable]) -> None:
        """
        Set the design variables this term depends on; duplicates are dropped
        """
        dvs: util.OrderedSet = util.OrderedSet()
        for dv in util.toList(designVariables):
            if not isinstance(dv, DesignVariable):
                raise TypeError(f"Expected a DesignVariable, got {type(dv).__name__}")
            dvs.add(dv)
        self._designVariables = list(dvs)

    def numDesignVariables(self) -> int:
        return len(self._designVariables)

    def designVariable(self, index: int) -> DesignVariable:
        """
        Get one of the term's design variables

        Raises:
            IndexError: if ``index`` is not in ``[0, numDesignVariables())``
        """
        if not 0 <= index < len(self._designVariables):
            raise IndexError(
                f"Design variable index {index} is out of range; the term has "
                f"{len(self._designVariables)} design variables"
            )
        return self._designVariables[index]

    def designVariables(self) -> list[DesignVariable]:
        return list(self._designVariables)

    def getDesignVariables(self, designVariables: util.OrderedSet) -> None:
        """
        Add this term's design variables to a set-like container
        """
        for dv in self._designVariables:
            designVariables.add(dv)

    @property
    def rowBase(self) -> int:
        """
        The offset of this term within a stacked error vector; -1 if unassigned
        """
        return self._rowBase

    def setRowBase(self, rowBase: int) -> None:
        self._rowBase = int(rowBase)

    # -------------------------------------------
    # Error evaluation

    @abstractmethod
    def _evaluateError(self) -> float:
        """
        Evaluate the error and return the raw (unweighted) squared error
        """
        pass

    @abstractmethod
    def error(self) -> NDArray[np.double]:
        """
        The error vector from the latest evaluation
        """
        pass

    def updateRawSquaredError(self) -> float:
        """
        Evaluate the error and cache the raw squared error

        Returns:
            the raw squared error
        """
        self._rawSquaredError = float(self._evaluateError())
        return self._rawSquaredError

    def evaluateError(self, useMEstimator: bool = True) -> float:
        """
        Evaluate the error and cache both squared-error values

        Args:
            useMEstimator: whether to return the M-estimator-weighted value
                (the default) or the raw value

        Returns:
            the weighted or raw squared error
        """
        raw = self.updateRawSquaredError()
        self._weightedSquaredError = self.getMEstimatorWeight(raw) * raw
        return self._weightedSquaredError if useMEstimator else raw

    def getRawSquaredError(self) -> float:
        """
        The raw squared error from the latest :func:`evaluateError` call
        """
        return self._rawSquaredError

    def getWeightedSquaredError(self) -> float:
        """
        The M-estimator-weighted squared error from the latest
        :func:`evaluateError` call
        """
        return self._weightedSquaredError

    def getSquaredError(self, useMEstimator: bool) -> float:
        """
        The weighted or raw squared error from the latest :func:`evaluateError` call
        """
        return self._weightedSquaredError if useMEstimator else self._rawSquaredError

    # -------------------------------------------
    # M-estimators

    def setMEstimatorPolicy(self, policy: MEstimator) -> None:
        if not isinstance(policy, MEstimator):
            raise TypeError(f"Expected an MEstimator, got {type(policy).__name__}")
        self._mEstimator = policy

    def clearMEstimatorPolicy(self) -> None:
        """
        Revert to the quadratic policy; calling this repeatedly has no further
        effect
        """
        self._mEstimator = NoMEstimator()

    def getMEstimatorPolicy(self) -> MEstimator:
        return self._mEstimator

    def getMEstimatorName(self) -> str:
        return self._mEstimator.name

    def getMEstimatorWeight(self, squaredError: float) -> float:
        # non-squared terms can be negative; policies expect a magnitude
        return float(self._mEstimator.getWeight(abs(squaredError)))

    def getCurrentMEstimatorWeight(self) -> float:
        """
        The M-estimator weight at the raw squared error of the latest evaluation
        """
        return self.getMEstimatorWeight(self._rawSquaredError)

    # -------------------------------------------
    # Jacobians

    @abstractmethod
    def evaluateJacobians(self, jc: JacobianContainer) -> None:
        """
        Back-propagate the Jacobian of the (unweighted) error vector into ``jc``
        """
        pass

    @abstractmethod
    def getWeightedJacobians(
        self, jc: JacobianContainer, useMEstimator: bool = True
    ) -> None:
        """
        Evaluate the Jacobians of the weighted error vector
        """
        pass

    @abstractmethod
    def getWeightedError(self, useMEstimator: bool = True) -> NDArray[np.double]:
        """
        The weighted error vector from the latest evaluation
        """
        pass

    def evaluateGradient(self, useMEstimator: bool = True) -> JacobianContainer:
        """
        Evaluate the gradient of this term's objective contribution

        For squared terms the contribution is ``e_w^T e_w``, so the gradient is
        ``2 e_w^T J_w``.

        Returns:
            a single-row container with one gradient block per active variable
        """
        jc = JacobianContainer(self._dimension)
        self.getWeightedJacobians(jc, useMEstimator)
        error = self.getWeightedError(useMEstimator)

        gradient = JacobianContainer(1)
        for dv in jc.designVariables():
            gradient.add(dv, 2.0 * error @ jc.Jacobian(dv))
        return gradient

    def buildHessian(
        self,
        hessian: object,
        rhs: NDArray[np.double],
        useMEstimator: bool = True,
    ) -> None:
        """
        Add this term's Gauss-Newton contribution to the normal equations

        For every pair of active dependent variables ``(i, j)``, ``J_i^T J_j`` is
        added to the Hessian block at the variables'
        :attr:`~optexpr.designvariables.DesignVariable.columnBase` offsets (both
        triangles are filled), and ``J_i^T e`` is subtracted from the matching
        rows of ``rhs``. Weighted Jacobians and errors are used.

        Args:
            hessian: a square dense array or a :mod:`scipy.sparse` matrix that
                supports slice assignment (e.g., ``lil_matrix``)
            rhs: the right-hand side vector
            useMEstimator: whether to apply the M-estimator weight

        Raises:
            ValueError: if a dependent variable has no column base assigned
        """
        jc = JacobianContainer(self._dimension)
        self.getWeightedJacobians(jc, useMEstimator)
        error = self.getWeightedError(useMEstimator)

        dvs = jc.designVariables()
        for dv in dvs:
            if dv.columnBase < 0:
                raise ValueError(f"{dv!r} has no column base; initialize the problem")

        for dvi in dvs:
            Ji = jc.Jacobian(dvi)
            ri = slice(dvi.columnBase, dvi.columnBase + dvi.minimalDimensions)
            rhs[ri] -= Ji.T @ error
            for dvj in dvs:
                Jj = jc.Jacobian(dvj)
                cj = slice(dvj.columnBase, dvj.columnBase + dvj.minimalDimensions)
                hessian[ri, cj] = hessian[ri, cj] + Ji.T @ Jj  # type: ignore[index]

    # -------------------------------------------
    # Checks

    def checkJacobiansFinite(self) -> bool:
        """
        Evaluate the Jacobians and check that every entry is finite

        Raises:
            RuntimeError: if any entry is NaN or infinite
        """
        jc = JacobianContainer(self._dimension)
        self.evaluateJacobians(jc)
        jc.checkFinite()
        return True

    def evaluateJacobiansFiniteDifference(
        self, jc: JacobianContainer, stepSize: float = 1e-6
    ) -> None:
        """
        Fill a container with central-difference Jacobians of the error vector

        Intended for verification only; the design variables are restored.
        """

        def errorVector():
            self.updateRawSquaredError()
            return self.error().copy()

        dvs = [dv for dv in self._designVariables if dv.isActive]
        for dv, block in zip(dvs, numerics.tangentJacobian(errorVector, dvs, stepSize)):
            jc.add(dv, block)

    def checkJacobiansNumerical(
        self,
        tolerance: float = 1e-6,
        stepSize: float = 1e-6,
        printTable: bool = False,
    ) -> bool:
        """
        Compare the analytic Jacobians against central differences

        Args:
            tolerance: used as both the relative and the absolute tolerance
            stepSize: the tangent-space perturbation size
            printTable: whether or not to print a table with the comparison data

        Returns:
            True if every entry matches
        """
        dvs = [dv for dv in self._designVariables if dv.isActive]

        numericJc = JacobianContainer(self._dimension)
        self.evaluateJacobiansFiniteDifference(numericJc, stepSize)
        numeric = numericJc.asDenseMatrix(dvs)

        self.evaluateError()
        analyticJc = JacobianContainer(self._dimension)
        self.evaluateJacobians(analyticJc)
        analytic = analyticJc.asDenseMatrix(dvs)

        _, _, ok = numerics.compareJacobians(numeric, analytic, tolerance, tolerance)
        if printTable:
            console.print(
                numerics.comparisonTable(
                    numeric,
                    analytic,
                    numerics.tangentColumnNames(dvs),
                    tolerance,
                    tolerance,
                    title=self.__class__.__name__,
                )
            )
        return bool(np.all(ok))


class ErrorTermFs(ErrorTerm):
    """
    A vector-valued error with an inverse covariance, ``s = e^T R^-1 e``

    Subclasses implement :func:`_computeError` and :func:`evaluateJacobians`.

    Args:
        dimension: the number of rows in the error vector
        designVariables: the variables the error depends on
    """

    def __init__(
        self, dimension: int, designVariables: Sequence[DesignVariable] = ()
    ) -> None:
        super().__init__(dimension, designVariables)
        self._error = np.zeros(self._dimension)
        self._invR = np.eye(self._dimension)
        self._sqrtInvR = np.eye(self._dimension)

    @abstractmethod
    def _computeError(self) -> FloatArray:
        """
        Evaluate the error vector at the current design variable values
        """
        pass

    @override
    def _evaluateError(self) -> float:
        self.setError(self._computeError())
        return float(self._error @ self._invR @ self._error)

    def setError(self, error: FloatArray) -> None:
        self._error = util.toVector(error, self._dimension)

    @override
    def error(self) -> NDArray[np.double]:
        return self._error

    # -------------------------------------------
    # Noise model

    def setInvR(self, invR: FloatArray) -> None:
        """
        Set the inverse covariance; its lower Cholesky factor ``L`` (with
        ``invR = L L^T``) is stored as :func:`sqrtInvR`

        Raises:
            ValueError: if ``invR`` is not square with the error dimension, or is
                not symmetric positive definite
        """
        mat = np.array(invR, dtype=np.double, ndmin=2)
        if not mat.shape == (self._dimension, self._dimension):
            raise ValueError(
                f"invR must be {self._dimension}x{self._dimension}, got {mat.shape}"
            )
        if not np.allclose(mat, mat.T):
            raise ValueError("invR must be symmetric")
        try:
            sqrt = scipy.linalg.cholesky(mat, lower=True)
        except np.linalg.LinAlgError as err:
            raise ValueError("invR must be positive definite") from err

        self._invR = mat
        self._sqrtInvR = sqrt

    def setSqrtInvR(self, sqrtInvR: FloatArray) -> None:
        """
        Set a square root ``A`` of the inverse covariance, ``invR = A A^T``
        """
        mat = np.array(sqrtInvR, dtype=np.double, ndmin=2)
        if not mat.shape == (self._dimension, self._dimension):
            raise ValueError(
                f"sqrtInvR must be {self._dimension}x{self._dimension}, got {mat.shape}"
            )
        self._sqrtInvR = mat
        self._invR = mat @ mat.T

    def invR(self) -> NDArray[np.double]:
        return self._invR

    def sqrtInvR(self) -> NDArray[np.double]:
        return self._sqrtInvR

    # -------------------------------------------
    # Weighted quantities

    def _whitening(self, useMEstimator: bool) -> NDArray[np.double]:
        scale = np.sqrt(self.getCurrentMEstimatorWeight()) if useMEstimator else 1.0
        return scale * self._sqrtInvR.T

    @override
    def getWeightedJacobians(
        self, jc: JacobianContainer, useMEstimator: bool = True
    ) -> None:
        with jc.apply(self._whitening(useMEstimator)):
            self.evaluateJacobians(jc)

    @override
    def getWeightedError(self, useMEstimator: bool = True) -> NDArray[np.double]:
        return self._whitening(useMEstimator) @ self._error


class ExpressionErrorTerm(ErrorTermFs):
    """
    An error equal to the value of a scalar or vector expression

    Args:
        expression: the error expression
        invR: an optional inverse covariance; defaults to identity

    Raises:
        TypeError: if ``expression`` is not a scalar or vector expression
    """

    def __init__(
        self,
        expression: Union[ScalarExpression, VectorExpression],
        invR: Union[None, FloatArray] = None,
    ) -> None:
        if not isinstance(expression, (ScalarExpression, VectorExpression)):
            raise TypeError(
                f"Expected a scalar or vector expression, got {type(expression).__name__}"
            )
        super().__init__(expression.tangentDimension, expression.designVariables())
        self._expression = expression
        if invR is not None:
            self.setInvR(invR)

    @property
    def expression(self) -> ExpressionNode:
        return self._expression

    @override
    def _computeError(self) -> FloatArray:
        return self._expression.evaluate()

    @override
    def evaluateJacobians(self, jc: JacobianContainer) -> None:
        self._expression.evaluateJacobians(jc)


class ScalarNonSquaredErrorTerm(ErrorTerm):
    """
    A scalar objective contribution that is *not* squared, ``weight * e``

    This is used to add smooth penalties to gradient-based optimizers such as
    :class:`~optexpr.optimizers.rprop.OptimizerRprop`. The gradient is
    ``weight * J``; there is no Gauss-Newton Hessian approximation. M-estimator
    policies are evaluated at ``|weight * e|``.

    Args:
        expression: the scalar expression, ``e``
        weight: the multiplier
    """

    def __init__(self, expression: ScalarExpression, weight: float = 1.0) -> None:
        if not isinstance(expression, ScalarExpression):
            raise TypeError(
                f"Expected a scalar expression, got {type(expression).__name__}"
            )
        super().__init__(1, expression.designVariables())
        self._expression = expression
        self.weight = float(weight)
        self._error = np.zeros(1)

    @override
    def _evaluateError(self) -> float:
        self._error = np.array([float(self._expression.evaluate())])  # type: ignore[arg-type]
        return self.weight * self._error[0]

    @override
    def error(self) -> NDArray[np.double]:
        return self._error

    @override
    def evaluateJacobians(self, jc: JacobianContainer) -> None:
        self._expression.evaluateJacobians(jc)

    def _scale(self, useMEstimator: bool) -> float:
        scale = self.weight
        if useMEstimator:
            scale *= self.getCurrentMEstimatorWeight()
        return scale

    @override
    def getWeightedJacobians(
        self, jc: JacobianContainer, useMEstimator: bool = True
    ) -> None:
        with jc.apply(self._scale(useMEstimator)):
            self.evaluateJacobians(jc)

    @override
    def getWeightedError(self, useMEstimator: bool = True) -> NDArray[np.double]:
        return self._scale(useMEstimator) * self._error

    @override
    def evaluateGradient(self, useMEstimator: bool = True) -> JacobianContainer:
        gradient = JacobianContainer(1)
        self.getWeightedJacobians(gradient, useMEstimator)
        return gradient

    @override
    def buildHessian(
        self,
        hessian: object,
        rhs: NDArray[np.double],
        useMEstimator: bool = True,
    ) -> None:
        raise NotImplementedError(
            "ScalarNonSquaredErrorTerm has no Gauss-Newton Hessian approximation"
        )
