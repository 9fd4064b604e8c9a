"""
Resilient Backpropagation
=========================

The Rprop family of first-order optimizers uses only the *sign* of each
gradient component. Every scalar parameter keeps its own step size,
:math:`\\Delta_i`, which grows by :attr:`~OptimizerRpropOptions.etaPlus` while
the gradient component keeps its sign and shrinks by
:attr:`~OptimizerRpropOptions.etaMinus` when the sign flips. Step sizes are
clamped to ``[minDelta, maxDelta]``.

Four variants are available (see :class:`RpropMethod`). They differ in how a
sign change is handled:

========================  =====================================================
Method                    Step on a sign change
========================  =====================================================
``RPROP_PLUS``            undo the previous step, forget the gradient
``RPROP_MINUS``           no special handling
``IRPROP_MINUS``          take no step, forget the gradient
``IRPROP_PLUS``           undo the previous step only if the objective
                          increased, forget the gradient
========================  =====================================================

.. code-block:: python

   problem = OptimizationProblem()
   problem.addErrorTerms(terms)

   options = OptimizerRpropOptions(method=RpropMethod.IRPROP_PLUS, maxIterations=500)
   optimizer = OptimizerRprop(options, problem)
   status = optimizer.optimize()
   status.print()

Optionally, a scalar regularizer expression can be supplied via
:attr:`OptimizerRpropOptions.regularizer`; its gradient is added to the gradient
of the error terms.

.. autosummary::
   :nosignatures:

   RpropMethod
   OptimizerRpropOptions
   OptimizerRprop

Reference
-----------

.. autoclass:: RpropMethod
   :members:

.. autoclass:: OptimizerRpropOptions
   :members:

.. autoclass:: OptimizerRprop
   :members:
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import IntEnum
from numbers import Real
from typing import Union

import numpy as np
from numpy.typing import NDArray

from optexpr.expressions.scalar import ScalarExpression
from optexpr.jacobians import JacobianContainer
from optexpr.optimizers import (
    ConvergenceStatus,
    OptimizerBase,
    OptimizerOptionsBase,
)
from optexpr.problem import OptimizationProblem
from optexpr.typing import override

logger = logging.getLogger(__name__)

__all__ = ["RpropMethod", "OptimizerRpropOptions", "OptimizerRprop"]


class RpropMethod(IntEnum):
    """
    The Rprop variants
    """

    RPROP_PLUS = 0  #: Rprop with weight backtracking
    RPROP_MINUS = 1  #: Rprop without weight backtracking
    IRPROP_MINUS = 2  #: improved Rprop without weight backtracking
    IRPROP_PLUS = 3  #: improved Rprop with objective-aware backtracking


class OptimizerRpropOptions(OptimizerOptionsBase):
    """
    Options for :class:`OptimizerRprop`

    In addition to the options in
    :class:`~optexpr.optimizers.OptimizerOptionsBase`, the step-size
    adaptation is configured here. ``method`` may also be given as the name of
    an :class:`RpropMethod`, e.g., ``"IRPROP_PLUS"``.
    """

    def __init__(self, **kwargs) -> None:
        #: float: step-size decrease factor on a sign change, in (0, 1)
        self.etaMinus = 0.5

        #: float: step-size increase factor, greater than ``etaMinus``
        self.etaPlus = 1.2

        #: float: initial step size for every parameter
        self.initialDelta = 0.1

        #: float: lower bound on the step sizes
        self.minDelta = 1e-20

        #: float: upper bound on the step sizes
        self.maxDelta = 1.0

        #: RpropMethod: the variant
        self.method = RpropMethod.RPROP_PLUS

        #: ScalarExpression: an optional regularizer added to the objective
        self.regularizer: Union[None, ScalarExpression] = None

        super().__init__(**kwargs)

    @override
    def update(self, **kwargs) -> None:
        method = kwargs.get("method", None)
        if isinstance(method, str):
            try:
                kwargs["method"] = RpropMethod[method.upper()]
            except KeyError:
                raise ValueError(f"Unknown Rprop method '{method}'") from None
        super().update(**kwargs)

    @override
    def check(self) -> None:
        super().check()

        for name in ("etaMinus", "etaPlus", "initialDelta", "minDelta", "maxDelta"):
            val = getattr(self, name)
            if isinstance(val, bool) or not isinstance(val, Real):
                raise TypeError(f"{name} must be a real number")

        if not 0.0 < self.etaMinus < 1.0:
            raise ValueError("etaMinus must be between 0 and 1 (exclusive)")
        if not self.etaPlus > self.etaMinus:
            raise ValueError("etaPlus must be greater than etaMinus")
        if not self.initialDelta > 0:
            raise ValueError("initialDelta must be positive")
        if not 0.0 < self.minDelta < self.maxDelta:
            raise ValueError("minDelta must be positive and less than maxDelta")

        if not isinstance(self.method, RpropMethod):
            raise TypeError("method must be an RpropMethod")

        if self.regularizer is not None and not isinstance(
            self.regularizer, ScalarExpression
        ):
            raise TypeError("regularizer must be a ScalarExpression or None")


class OptimizerRprop(OptimizerBase):
    """
    Sign-based first-order optimizer

    Args:
        options: the optimizer options; defaults are used if None
        problem: an optional problem to optimize

    The per-parameter step sizes, the last step, and the last gradient are
    kept between calls to :func:`optimize`; :func:`initialize` (or
    :func:`reset`) clears them.
    """

    def __init__(
        self,
        options: Union[None, OptimizerRpropOptions, Mapping[str, object]] = None,
        problem: Union[None, OptimizationProblem] = None,
    ) -> None:
        if options is None:
            options = OptimizerRpropOptions()
        elif isinstance(options, Mapping):
            options = OptimizerRpropOptions.fromDict(options)

        if not isinstance(options, OptimizerRpropOptions):
            raise TypeError("options must be an OptimizerRpropOptions")

        super().__init__(options, problem)

        self._delta = np.zeros(0)
        self._dx = np.zeros(0)
        self._prevGradient = np.zeros(0)
        self._prevError = np.finfo(np.double).max

    @property
    def delta(self) -> NDArray[np.double]:
        """
        The current per-parameter step sizes
        """
        return self._delta.copy()

    @property
    def dx(self) -> NDArray[np.double]:
        """
        The most recent step
        """
        return self._dx.copy()

    @property
    def previousGradient(self) -> NDArray[np.double]:
        return self._prevGradient.copy()

    @override
    def reset(self) -> None:
        n = self.numOptParameters
        self._dx = np.zeros(n)
        self._prevGradient = np.zeros(n)
        self._prevError = np.finfo(np.double).max
        self._delta = np.full(n, float(self.options.initialDelta))
        self._status.reset()

    def _regularizerGradient(self) -> NDArray[np.double]:
        reg = self.options.regularizer
        reg.evaluate()
        jc = JacobianContainer(1)
        reg.evaluateJacobians(jc)
        return jc.asDenseMatrix(self.designVariables())[0]

    def _objective(self) -> float:
        opts = self.options
        error = self.evaluateError(opts.numThreadsError, opts.useMEstimator)
        if opts.regularizer is not None:
            error += float(opts.regularizer.evaluate())
        self._status.numErrorEvaluations += 1
        return error

    @override
    def _optimize(self) -> None:
        opts = self.options
        status = self._status

        if not self._delta.size == self.numOptParameters:
            self.reset()

        sawNonFinite = False
        count = 0
        while opts.maxIterations < 0 or count < opts.maxIterations:
            count += 1
            status.numIterations += 1

            gradient = self.computeGradient(opts.numThreadsJacobian, opts.useMEstimator)
            if opts.regularizer is not None:
                gradient += self._regularizerGradient()
            status.numJacobianEvaluations += 1

            if not np.all(np.isfinite(gradient)):
                if opts.debugChecks:
                    raise RuntimeError(f"Gradient is not finite: {gradient}")
                logger.error(
                    f"Iteration {status.numIterations:03d}: gradient is not finite; "
                    "skipping the update"
                )
                sawNonFinite = True
                status.gradientNorm = np.nan
                continue

            status.gradientNorm = float(np.linalg.norm(gradient))
            if status.gradientNorm < opts.convergenceGradientNorm:
                status.convergence = ConvergenceStatus.GRADIENT_NORM
                break

            errorIncreased = False
            if opts.method == RpropMethod.IRPROP_PLUS:
                error = self._objective()
                if self._prevError < np.finfo(np.double).max:
                    status.deltaError = error - self._prevError
                errorIncreased = error - self._prevError > 0
                self._prevError = error
                status.error = error

                if abs(status.deltaError) < opts.convergenceDeltaError:
                    status.convergence = ConvergenceStatus.DOBJECTIVE
                    break

            gg = self._prevGradient * gradient
            switchNo = gg > 0
            switchYes = gg < 0
            self._prevGradient = gradient.copy()

            self._delta[switchNo] = np.minimum(
                self._delta[switchNo] * opts.etaPlus, opts.maxDelta
            )
            self._delta[switchYes] = np.maximum(
                self._delta[switchYes] * opts.etaMinus, opts.minDelta
            )

            step = -np.sign(gradient) * self._delta
            if opts.method == RpropMethod.RPROP_PLUS:
                self._dx = np.where(switchYes, -self._dx, step)
                self._prevGradient[switchYes] = 0.0
            elif opts.method == RpropMethod.RPROP_MINUS:
                self._dx = step
            elif opts.method == RpropMethod.IRPROP_MINUS:
                self._dx = np.where(switchYes, 0.0, step)
                self._prevGradient[switchYes] = 0.0
            else:
                backtrack = -self._dx if errorIncreased else np.zeros_like(self._dx)
                self._dx = np.where(switchYes, backtrack, step)
                self._prevGradient[switchYes] = 0.0

            status.maxDeltaX = float(np.max(np.abs(self._dx))) if self._dx.size else 0.0
            if status.maxDeltaX < opts.convergenceDeltaX:
                status.convergence = ConvergenceStatus.DX
                break

            logger.debug(
                f"Iteration {status.numIterations:03d}: |grad| = "
                f"{status.gradientNorm:.4e}, max |dx| = {status.maxDeltaX:.4e}, "
                f"max delta = {np.max(self._delta, initial=0.0):.4e}"
            )
            self.applyStateUpdate(self._dx)

        if status.convergence == ConvergenceStatus.IN_PROGRESS:
            if sawNonFinite:
                status.convergence = ConvergenceStatus.FAILURE
            else:
                status.convergence = ConvergenceStatus.MAX_ITERATIONS

        status.error = self._objective()
