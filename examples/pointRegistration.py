#!/usr/bin/env python3
"""
Estimate the rigid transformation that maps one point cloud onto another. A few
correspondences are corrupted, so a Cauchy M-estimator downweights them.
"""
import logging

import numpy as np
from rich.logging import RichHandler
from scipy.spatial.transform import Rotation

from optexpr.errorterms import ExpressionErrorTerm
from optexpr.expressions.rotation import RotationQuaternion
from optexpr.expressions.transformation import TransformationBasic
from optexpr.expressions.vector import EuclideanPoint
from optexpr.mestimators import CauchyMEstimator
from optexpr.optimizers.rprop import OptimizerRprop, OptimizerRpropOptions, RpropMethod
from optexpr.problem import OptimizationProblem

logger = logging.getLogger("optexpr")
logger.addHandler(RichHandler(show_time=False, show_path=False, enable_link_path=False))
logger.setLevel(logging.INFO)

rng = np.random.default_rng(42)

# Truth
C_true = Rotation.from_rotvec([0.2, -0.1, 0.3]).as_matrix()
t_true = np.array([0.5, -1.0, 2.0])

source = rng.uniform(-5, 5, size=(40, 3))
target = source @ C_true.T + t_true + rng.normal(scale=0.01, size=source.shape)
target[:4] += rng.uniform(-3, 3, size=(4, 3))  # outliers

# Unknowns, initialized at identity
C = RotationQuaternion([0.0, 0.0, 0.0, 1.0], "C")
t = EuclideanPoint(np.zeros(3), "t")
T = TransformationBasic(C, t)

problem = OptimizationProblem()
for src, tgt in zip(source, target):
    term = ExpressionErrorTerm(T * src - tgt, np.eye(3) / 0.01**2)
    term.setMEstimatorPolicy(CauchyMEstimator(9.0))
    problem.addErrorTerms(term)

problem.printDesignVariables()

options = OptimizerRpropOptions(
    method=RpropMethod.IRPROP_PLUS,
    maxIterations=2000,
    convergenceGradientNorm=1e-6,
    convergenceDeltaX=1e-10,
    useMEstimator=True,
    numThreadsJacobian=4,
    numThreadsError=4,
)
optimizer = OptimizerRprop(options, problem)
status = optimizer.optimize()
status.print()

C_est = C.getParameters()
logger.info(
    f"Rotation error = {np.linalg.norm(Rotation.from_quat(C_est).as_rotvec() - Rotation.from_matrix(C_true).as_rotvec()):.3e} rad"
)
logger.info(f"Translation error = {np.linalg.norm(t.getParameters() - t_true):.3e}")
