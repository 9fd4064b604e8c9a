"""
Optimizers
==========

This module provides the pieces shared by all optimizers: an options base class
with eager validation, the status record returned by every run, the
:class:`ProblemManager` that lays out design variables and aggregates
gradients and errors over error terms, and the :class:`OptimizerBase` that
drives the ``initialize`` / ``optimize`` life cycle.

.. autosummary::
   :nosignatures:

   OptimizerOptionsBase
   ConvergenceStatus
   OptimizerStatus
   ProblemManager
   OptimizerBase

Concrete optimizers live in submodules:

.. autosummary::

   ~optexpr.optimizers.rprop

Parallel aggregation
---------------------

:func:`ProblemManager.computeGradient` and :func:`ProblemManager.evaluateError`
split the error terms into contiguous chunks, one per worker. Each worker sums
its chunk into a private buffer and the partial sums are combined in chunk
order, so the result does not depend on thread scheduling. Worker counts of 0
and 1 run sequentially.

Reference
-----------

.. autoclass:: OptimizerOptionsBase
   :members:

.. autoclass:: ConvergenceStatus
   :members:

.. autoclass:: OptimizerStatus
   :members:

.. autoclass:: ProblemManager
   :members:

.. autoclass:: OptimizerBase
   :members:
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from enum import IntEnum
from numbers import Real
from typing import TypeVar, Union

import numpy as np
from numpy.typing import NDArray
from rich.table import Table

from optexpr import console, util
from optexpr.designvariables import DesignVariable
from optexpr.errorterms import ErrorTerm
from optexpr.jacobians import JacobianContainer
from optexpr.problem import OptimizationProblem
from optexpr.typing import FloatArray

logger = logging.getLogger(__name__)

__all__ = [
    "OptimizerOptionsBase",
    "ConvergenceStatus",
    "OptimizerStatus",
    "ProblemManager",
    "OptimizerBase",
    # submodules
    "rprop",
]

OptionsType = TypeVar("OptionsType", bound="OptimizerOptionsBase")

# ------------------------------------------------------------------------------
# Options


class OptimizerOptionsBase:
    """
    Options shared by all optimizers

    Keyword arguments override the defaults; the options are validated with
    :func:`check` on construction and after every :func:`update`.

    Raises:
        AttributeError: if a keyword does not name an option
        TypeError: if an option has the wrong type
        ValueError: if an option has an invalid value
    """

    #: Alternative keys accepted by :func:`fromDict`
    ALIASES: dict[str, tuple[str, ...]] = {
        "convergenceDx": ("convergenceDeltaX",),
        "nThreads": ("numThreadsJacobian", "numThreadsError"),
    }

    def __init__(self, **kwargs) -> None:
        #: float: stop when the gradient norm falls below this value
        self.convergenceGradientNorm = 1e-3

        #: float: stop when the largest absolute step falls below this value
        self.convergenceDeltaX = 0.0

        #: float: stop when the change in the objective falls below this value
        self.convergenceDeltaError = 0.0

        #: int: maximum number of iterations; -1 for no limit
        self.maxIterations = 20

        #: int: worker threads for gradient aggregation; 0 or 1 is sequential
        self.numThreadsJacobian = 1

        #: int: worker threads for error aggregation; 0 or 1 is sequential
        self.numThreadsError = 1

        #: bool: whether to apply the error terms' M-estimators
        self.useMEstimator = False

        #: bool: whether non-finite gradients raise instead of failing the run
        self.debugChecks = False

        self.update(**kwargs)

    def __repr__(self) -> str:
        return util.repr(self, *self._optionNames())

    def _optionNames(self) -> list[str]:
        return [name for name in vars(self) if not name.startswith("_")]

    def update(self, **kwargs) -> None:
        """
        Set one or more options and validate the result

        Raises:
            AttributeError: if a keyword does not name an option
        """
        for key, val in kwargs.items():
            if not key in vars(self):
                raise AttributeError(f"{self.__class__.__name__} has no option '{key}'")
            setattr(self, key, val)
        self.check()

    @classmethod
    def fromDict(cls: type[OptionsType], config: Mapping[str, object]) -> OptionsType:
        """
        Create options from a mapping, e.g., one loaded from a configuration file

        Keys listed in :attr:`ALIASES` are translated before the options are set.
        """
        kwargs = {}
        for key, val in config.items():
            for name in cls.ALIASES.get(key, (key,)):
                kwargs[name] = val
        return cls(**kwargs)

    def toDict(self) -> dict[str, object]:
        return {name: getattr(self, name) for name in self._optionNames()}

    def check(self) -> None:
        """
        Check the types and values of the options so that useful errors can be
        raised before they are used

        Raises:
            TypeError: if any option type is incorrect
            ValueError: if any option value is invalid
        """
        for name in (
            "convergenceGradientNorm",
            "convergenceDeltaX",
            "convergenceDeltaError",
        ):
            val = getattr(self, name)
            if isinstance(val, bool) or not isinstance(val, Real):
                raise TypeError(f"{name} must be a real number")
            if not val >= 0:
                raise ValueError(f"{name} must be non-negative")

        if not (
            self.convergenceGradientNorm > 0
            or self.convergenceDeltaX > 0
            or self.convergenceDeltaError > 0
        ):
            raise ValueError("At least one convergence threshold must be positive")

        if isinstance(self.maxIterations, bool) or not isinstance(
            self.maxIterations, (int, np.integer)
        ):
            raise TypeError("maxIterations must be an integer")
        if not self.maxIterations >= -1:
            raise ValueError("maxIterations must be -1 (unlimited) or non-negative")

        for name in ("numThreadsJacobian", "numThreadsError"):
            val = getattr(self, name)
            if isinstance(val, bool) or not isinstance(val, (int, np.integer)):
                raise TypeError(f"{name} must be an integer")
            if not val >= 0:
                raise ValueError(f"{name} must be non-negative")

        for name in ("useMEstimator", "debugChecks"):
            if not isinstance(getattr(self, name), bool):
                raise TypeError(f"{name} must be a bool")


# ------------------------------------------------------------------------------
# Status


class ConvergenceStatus(IntEnum):
    """
    How an optimization run terminated
    """

    IN_PROGRESS = 0  #: the run has not terminated
    FAILURE = 1  #: the run could not make progress (e.g., non-finite gradient)
    GRADIENT_NORM = 2  #: the gradient norm fell below the threshold
    DX = 3  #: the largest step fell below the threshold
    DOBJECTIVE = 4  #: the change in the objective fell below the threshold
    MAX_ITERATIONS = 5  #: the iteration cap was reached


class OptimizerStatus:
    """
    The externally observed result of running an optimizer
    """

    def __init__(self) -> None:
        self.reset()

    def __repr__(self) -> str:
        return util.repr(
            self,
            "convergence",
            "numIterations",
            "gradientNorm",
            "error",
            "deltaError",
            "maxDeltaX",
            "numErrorEvaluations",
            "numJacobianEvaluations",
        )

    def reset(self) -> None:
        #: ConvergenceStatus: how the run terminated
        self.convergence = ConvergenceStatus.IN_PROGRESS

        #: int: number of iterations
        self.numIterations = 0

        #: float: the norm of the last gradient
        self.gradientNorm = np.nan

        #: float: the last evaluated objective value
        self.error = np.nan

        #: float: the last change in the objective
        self.deltaError = np.nan

        #: float: the largest absolute step of the last iteration
        self.maxDeltaX = np.nan

        #: int: number of objective evaluations
        self.numErrorEvaluations = 0

        #: int: number of gradient (Jacobian) evaluations
        self.numJacobianEvaluations = 0

    def success(self) -> bool:
        """
        Whether the run terminated without failing
        """
        return self.convergence not in (
            ConvergenceStatus.FAILURE,
            ConvergenceStatus.IN_PROGRESS,
        )

    def failure(self) -> bool:
        return self.convergence == ConvergenceStatus.FAILURE

    def print(self) -> None:
        """
        Print the status to the screen
        """
        table = Table("Field", "Value", title="Optimizer Status")
        style = "green" if self.success() else "red"
        table.add_row("convergence", f"[{style}]{self.convergence.name}[/{style}]")
        table.add_row("iterations", f"{self.numIterations:d}")
        table.add_row("gradient norm", f"{self.gradientNorm:.4e}")
        table.add_row("error", f"{self.error:.4e}")
        table.add_row("delta error", f"{self.deltaError:.4e}")
        table.add_row("max |dx|", f"{self.maxDeltaX:.4e}")
        table.add_row("error evaluations", f"{self.numErrorEvaluations:d}")
        table.add_row("Jacobian evaluations", f"{self.numJacobianEvaluations:d}")
        console.print(table)


# ------------------------------------------------------------------------------
# Problem management


class ProblemManager:
    """
    Lays out the design variables of a problem and aggregates error terms

    After :func:`initialize`, every active design variable has a
    :attr:`~optexpr.designvariables.DesignVariable.blockIndex` and a
    :attr:`~optexpr.designvariables.DesignVariable.columnBase` that place it in
    the stacked gradient, and every error term has a
    :attr:`~optexpr.errorterms.ErrorTerm.rowBase`.
    """

    def __init__(self) -> None:
        self._problem: Union[None, OptimizationProblem] = None
        self._designVariables: list[DesignVariable] = []
        self._errorTerms: list[ErrorTerm] = []
        self._columnMap: dict[DesignVariable, int] = {}
        self._numOptParameters = 0
        self._numErrorRows = 0
        self._isInitialized = False

    @property
    def problem(self) -> Union[None, OptimizationProblem]:
        return self._problem

    def setProblem(self, problem: OptimizationProblem) -> None:
        """
        Set the problem; the manager must be re-initialized before use

        Raises:
            TypeError: if ``problem`` is not an :class:`OptimizationProblem`
        """
        if not isinstance(problem, OptimizationProblem):
            raise TypeError("problem must be an OptimizationProblem")
        self._problem = problem
        self._isInitialized = False

    def initialize(self) -> None:
        """
        Assign block indices, column bases, and row bases

        Raises:
            RuntimeError: if no problem has been set
        """
        if self._problem is None:
            raise RuntimeError("No problem has been set")

        self._designVariables = []
        self._columnMap = {}
        column = 0
        for dv in self._problem.designVariables():
            if dv.isActive:
                dv.blockIndex = len(self._designVariables)
                dv.columnBase = column
                self._columnMap[dv] = column
                self._designVariables.append(dv)
                column += dv.minimalDimensions
            else:
                dv.blockIndex = -1
                dv.columnBase = -1
        self._numOptParameters = column

        self._errorTerms = self._problem.errorTerms()
        row = 0
        for term in self._errorTerms:
            term.setRowBase(row)
            row += term.dimension
        self._numErrorRows = row

        self._isInitialized = True
        logger.debug(
            f"Initialized problem: {len(self._designVariables)} design variables, "
            f"{self._numOptParameters} parameters, {len(self._errorTerms)} error terms"
        )

    def isInitialized(self) -> bool:
        return self._isInitialized

    @property
    def numOptParameters(self) -> int:
        """
        The number of optimized scalar parameters, i.e., the length of the
        stacked gradient
        """
        return self._numOptParameters

    def designVariables(self) -> list[DesignVariable]:
        """
        The active design variables, ordered by column base
        """
        return list(self._designVariables)

    def errorTerms(self) -> list[ErrorTerm]:
        return list(self._errorTerms)

    def _checkInitialized(self) -> None:
        if not self._isInitialized:
            raise RuntimeError("The problem manager has not been initialized")

    def _chunks(self, numThreads: int) -> list[list[ErrorTerm]]:
        nChunks = max(1, min(int(numThreads), len(self._errorTerms)))
        bounds = np.linspace(0, len(self._errorTerms), nChunks + 1).astype(int)
        return [self._errorTerms[bounds[i] : bounds[i + 1]] for i in range(nChunks)]

    def _aggregate(
        self, func: Callable[[list[ErrorTerm]], object], numThreads: int
    ) -> list:
        chunks = self._chunks(numThreads)
        if len(chunks) <= 1:
            return [func(chunk) for chunk in chunks]

        with ThreadPoolExecutor(max_workers=len(chunks)) as pool:
            # map preserves chunk order
            return list(pool.map(func, chunks))

    def _scatter(self, gradient: NDArray[np.double], jc: JacobianContainer) -> None:
        for dv in jc.designVariables():
            col = self._columnMap.get(dv, -1)
            if col < 0:
                continue
            gradient[col : col + dv.minimalDimensions] += jc.Jacobian(dv)[0]

    def computeGradient(
        self, numThreads: int = 1, useMEstimator: bool = False
    ) -> NDArray[np.double]:
        """
        Evaluate the gradient of the objective with respect to the stacked
        design variables

        Each error term is evaluated and its gradient contribution
        (:func:`~optexpr.errorterms.ErrorTerm.evaluateGradient`) is scattered at
        the variables' column bases.

        Args:
            numThreads: worker threads; 0 or 1 is sequential
            useMEstimator: whether to apply the error terms' M-estimators

        Returns:
            the gradient, a vector with :attr:`numOptParameters` elements
        """
        self._checkInitialized()
        n = self._numOptParameters

        def partial(terms: list[ErrorTerm]) -> NDArray[np.double]:
            gradient = np.zeros(n)
            for term in terms:
                term.evaluateError(useMEstimator)
                self._scatter(gradient, term.evaluateGradient(useMEstimator))
            return gradient

        gradient = np.zeros(n)
        for part in self._aggregate(partial, numThreads):
            gradient += part
        return gradient

    def evaluateError(self, numThreads: int = 1, useMEstimator: bool = False) -> float:
        """
        Evaluate the objective, the sum of all error terms

        Args:
            numThreads: worker threads; 0 or 1 is sequential
            useMEstimator: whether to sum weighted (True) or raw squared errors

        Returns:
            the objective value
        """
        self._checkInitialized()

        def partial(terms: list[ErrorTerm]) -> float:
            return float(sum(term.evaluateError(useMEstimator) for term in terms))

        return float(sum(self._aggregate(partial, numThreads)))

    def applyStateUpdate(self, dx: FloatArray) -> None:
        """
        Apply a stacked step to all active design variables

        Raises:
            ValueError: if ``dx`` does not have :attr:`numOptParameters` elements
        """
        self._checkInitialized()
        step = util.toVector(dx, self._numOptParameters)
        for dv in self._designVariables:
            col = self._columnMap[dv]
            dv.update(step[col : col + dv.minimalDimensions])

    def revertLastStateUpdate(self) -> None:
        """
        Undo the most recent :func:`applyStateUpdate`
        """
        self._checkInitialized()
        for dv in self._designVariables:
            dv.revert()

    def buildHessian(
        self, useMEstimator: bool = False
    ) -> tuple[NDArray[np.double], NDArray[np.double]]:
        """
        Assemble the dense Gauss-Newton system

        Returns:
            the Hessian approximation ``J^T J`` and the right-hand side ``-J^T e``
        """
        self._checkInitialized()
        n = self._numOptParameters
        hessian = np.zeros((n, n))
        rhs = np.zeros(n)
        for term in self._errorTerms:
            term.evaluateError(useMEstimator)
            term.buildHessian(hessian, rhs, useMEstimator)
        return hessian, rhs

    def stackedJacobian(self, useMEstimator: bool = False) -> NDArray[np.double]:
        """
        The weighted Jacobian of all error terms, stacked at their row bases

        Intended for diagnostics.
        """
        self._checkInitialized()
        J = np.zeros((self._numErrorRows, self._numOptParameters))
        for term in self._errorTerms:
            term.evaluateError(useMEstimator)
            jc = JacobianContainer(term.dimension)
            term.getWeightedJacobians(jc, useMEstimator)
            rows = slice(term.rowBase, term.rowBase + term.dimension)
            for dv in jc.designVariables():
                col = self._columnMap.get(dv, -1)
                if col >= 0:
                    J[rows, col : col + dv.minimalDimensions] += jc.Jacobian(dv)
        return J

    def stackedError(self, useMEstimator: bool = False) -> NDArray[np.double]:
        """
        The weighted errors of all error terms, stacked at their row bases
        """
        self._checkInitialized()
        e = np.zeros(self._numErrorRows)
        for term in self._errorTerms:
            term.evaluateError(useMEstimator)
            e[term.rowBase : term.rowBase + term.dimension] = term.getWeightedError(
                useMEstimator
            )
        return e


# ------------------------------------------------------------------------------
# Optimizer base


class OptimizerBase(ProblemManager, ABC):
    """
    Base class for optimizers

    Args:
        options: the optimizer options
        problem: an optional problem to optimize
    """

    def __init__(
        self,
        options: OptimizerOptionsBase,
        problem: Union[None, OptimizationProblem] = None,
    ) -> None:
        super().__init__()
        if not isinstance(options, OptimizerOptionsBase):
            raise TypeError("options must be an OptimizerOptionsBase")

        #: the optimizer options; validated before every run
        self.options = options
        self._status = OptimizerStatus()

        if problem is not None:
            self.setProblem(problem)

    def __repr__(self) -> str:
        return util.repr(self, "options", "status")

    @property
    def status(self) -> OptimizerStatus:
        return self._status

    def initialize(self) -> None:
        """
        Lay out the problem and reset the optimizer state
        """
        super().initialize()
        self.reset()

    @abstractmethod
    def reset(self) -> None:
        """
        Reset the optimizer-owned buffers and the status record
        """
        pass

    @abstractmethod
    def _optimize(self) -> None:
        pass

    def optimize(self) -> OptimizerStatus:
        """
        Run the optimizer; initializes first if needed

        Non-convergence is not an error: inspect
        :attr:`OptimizerStatus.convergence` of the returned record.

        Returns:
            the status record
        """
        self.options.check()
        if not self.isInitialized():
            self.initialize()

        logger.info(
            f"Beginning {self.__class__.__name__} with {self.numOptParameters} "
            f"parameters and {len(self._errorTerms)} error terms"
        )
        self._status.convergence = ConvergenceStatus.IN_PROGRESS
        self._optimize()
        logger.info(
            f"{self.__class__.__name__} terminated: {self._status.convergence.name} "
            f"(iterations: {self._status.numIterations}, gradient norm: "
            f"{self._status.gradientNorm:.4e})"
        )
        return self._status
