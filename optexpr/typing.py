"""
Define custom types
"""
from collections.abc import Sequence
from typing import Union

import numpy as np
import numpy.typing as npT

#: An array-like object of ints
IntArray = Union[Sequence[int], npT.NDArray[np.signedinteger]]

#: An array-like object of floats
FloatArray = Union[Sequence[float], Sequence[np.double], npT.NDArray[np.double]]

#: A chain-rule factor: a dense matrix or a scalar multiplier
ChainRule = Union[float, npT.NDArray[np.double]]

try:
    # Works for python 3.12+
    from typing import override  # type: ignore
except ImportError:
    from overrides import override  # type: ignore
