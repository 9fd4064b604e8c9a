"""
Pytest Configuration
"""
import logging

import numpy as np
import pytest
from rich.logging import RichHandler
from scipy.spatial.transform import Rotation

from optexpr.expressions.rotation import RotationQuaternion
from optexpr.expressions.transformation import TransformationBasic
from optexpr.expressions.vector import EuclideanPoint


def randomRotation(seed):
    """
    Convenience function to create a reproducible rotation matrix

    Args:
        seed (int): random seed

    Returns:
        numpy.ndarray: a 3x3 rotation matrix
    """
    return Rotation.random(random_state=seed).as_matrix()


def rotationVariable(seed, name="C"):
    return RotationQuaternion(Rotation.random(random_state=seed).as_quat(), name)


def transformationVariable(seed, name="T"):
    """
    Build a transformation expression from a rotation and a translation variable
    """
    rng = np.random.default_rng(seed)
    C = rotationVariable(seed, name + ".C")
    t = EuclideanPoint(rng.normal(size=3), name + ".t")
    return TransformationBasic(C, t), C, t


# @pytest.fixture(scope="session", autouse=True)
# def logger():
#    """
#    Configure the logger for unit test output
#    """
#    logger = logging.getLogger("optexpr")
#    logger.handlers.clear()
#    logger.addHandler(RichHandler(show_time=False, enable_link_path=False))
#    logger.setLevel(logging.DEBUG)
#    logger.propagate = False
#    return logger.name
