"""
M-Estimators
============

Robust weighting policies for error terms. An M-estimator maps the squared
error of a term to a weight; the weighted squared error is
``weight * squaredError`` and the weighted Jacobian is scaled by
``sqrt(weight)`` so that the normal-equation contribution reflects the weight
linearly (iteratively re-weighted least squares).

Policies hold no state that depends on other error terms, so one instance may
be shared by many terms.

.. autosummary::
   :nosignatures:

   MEstimator
   NoMEstimator
   FixedWeightMEstimator
   GaussianMEstimator
   HuberMEstimator
   CauchyMEstimator
   BlakeZissermanMEstimator

Reference
-----------

.. autoclass:: MEstimator
   :members:

.. autoclass:: HuberMEstimator
.. autoclass:: CauchyMEstimator
.. autoclass:: BlakeZissermanMEstimator
"""
import logging
from abc import ABC, abstractmethod

import numpy as np
from scipy.stats import chi2

from optexpr import util
from optexpr.typing import override

logger = logging.getLogger(__name__)

__all__ = [
    "MEstimator",
    "NoMEstimator",
    "FixedWeightMEstimator",
    "GaussianMEstimator",
    "HuberMEstimator",
    "CauchyMEstimator",
    "BlakeZissermanMEstimator",
]


class MEstimator(ABC):
    """
    Base class for M-estimator policies
    """

    def __repr__(self) -> str:
        return f"<{self.name}>"

    @abstractmethod
    def getWeight(self, squaredError: float) -> float:
        """
        Compute the weight for a squared error

        Args:
            squaredError: the (raw) squared error of an error term

        Returns:
            the weight
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        pass


class NoMEstimator(MEstimator):
    """
    The quadratic (identity) policy; always returns a weight of 1
    """

    @override
    def getWeight(self, squaredError: float) -> float:
        return 1.0

    @property  # type: ignore[misc]
    @override
    def name(self) -> str:
        return "NoMEstimator"


class FixedWeightMEstimator(MEstimator):
    """
    A constant weight

    Raises:
        ValueError: if ``weight`` is negative
    """

    def __init__(self, weight: float) -> None:
        if not weight >= 0:
            raise ValueError("weight must be non-negative")
        self.weight = float(weight)

    def __repr__(self) -> str:
        return util.repr(self, "weight")

    @override
    def getWeight(self, squaredError: float) -> float:
        return self.weight

    @property  # type: ignore[misc]
    @override
    def name(self) -> str:
        return "FixedWeightMEstimator"


class GaussianMEstimator(MEstimator):
    """
    An isotropic Gaussian noise model, ``weight = 1 / sigma2``

    Raises:
        ValueError: if ``sigma2`` is not positive
    """

    def __init__(self, sigma2: float) -> None:
        if not sigma2 > 0:
            raise ValueError("sigma2 must be positive")
        self.sigma2 = float(sigma2)

    def __repr__(self) -> str:
        return util.repr(self, "sigma2")

    @override
    def getWeight(self, squaredError: float) -> float:
        return 1.0 / self.sigma2

    @property  # type: ignore[misc]
    @override
    def name(self) -> str:
        return "GaussianMEstimator"


class HuberMEstimator(MEstimator):
    """
    Quadratic inside ``|e| < k``, linear outside

    .. math::
       w(s) = \\begin{cases} 1 & \\sqrt{s} < k \\\\ k / \\sqrt{s} & \\text{otherwise} \\end{cases}

    Raises:
        ValueError: if ``k`` is not positive
    """

    def __init__(self, k: float) -> None:
        if not k > 0:
            raise ValueError("k must be positive")
        self.k = float(k)

    def __repr__(self) -> str:
        return util.repr(self, "k")

    @override
    def getWeight(self, squaredError: float) -> float:
        e = np.sqrt(squaredError)
        return 1.0 if e < self.k else self.k / e

    @property  # type: ignore[misc]
    @override
    def name(self) -> str:
        return "HuberMEstimator"


class CauchyMEstimator(MEstimator):
    """
    ``w(s) = 1 / (1 + s / sigma2)``

    Raises:
        ValueError: if ``sigma2`` is not positive
    """

    def __init__(self, sigma2: float) -> None:
        if not sigma2 > 0:
            raise ValueError("sigma2 must be positive")
        self.sigma2 = float(sigma2)

    def __repr__(self) -> str:
        return util.repr(self, "sigma2")

    @override
    def getWeight(self, squaredError: float) -> float:
        return 1.0 / (1.0 + squaredError / self.sigma2)

    @property  # type: ignore[misc]
    @override
    def name(self) -> str:
        return "CauchyMEstimator"


class BlakeZissermanMEstimator(MEstimator):
    """
    A mixture of an inlier Gaussian and a uniform outlier density

    .. math::
       w(s) = \\frac{e^{-s}}{e^{-s} + \\epsilon}

    The constant :math:`\\epsilon` is chosen such that the weight equals ``e``
    at the ``p`` quantile of a chi-squared distribution with ``dims`` degrees of
    freedom.

    Args:
        dims: the dimension of the error terms
        p: the quantile, in (0, 1)
        e: the weight at the quantile, in (0, 1)

    Raises:
        ValueError: if any argument is out of range
    """

    def __init__(self, dims: int, p: float = 0.999, e: float = 0.1) -> None:
        if not int(dims) > 0:
            raise ValueError("dims must be positive")
        if not 0 < p < 1:
            raise ValueError("p must be in (0, 1)")
        if not 0 < e < 1:
            raise ValueError("e must be in (0, 1)")

        self.dims = int(dims)
        self.p = float(p)
        self.e = float(e)

        k2 = float(chi2.ppf(self.p, self.dims))
        self.epsilon = (1.0 - self.e) / self.e * np.exp(-k2)

    def __repr__(self) -> str:
        return util.repr(self, "dims", "p", "e", "epsilon")

    @override
    def getWeight(self, squaredError: float) -> float:
        mlse = np.exp(-squaredError)
        return float(mlse / (mlse + self.epsilon))

    @property  # type: ignore[misc]
    @override
    def name(self) -> str:
        return "BlakeZissermanMEstimator"
