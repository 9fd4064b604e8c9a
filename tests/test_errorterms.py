"""
Test error terms
"""
import numpy as np
import pytest
from conftest import rotationVariable

import optexpr.expressions.scalar as scalar
from optexpr.errorterms import ExpressionErrorTerm, ScalarNonSquaredErrorTerm
from optexpr.expressions.rotation import RotationConstant
from optexpr.expressions.scalar import Scalar
from optexpr.expressions.vector import EuclideanPoint
from optexpr.jacobians import JacobianContainer
from optexpr.mestimators import (
    CauchyMEstimator,
    FixedWeightMEstimator,
    HuberMEstimator,
    NoMEstimator,
)

INV_R = np.array([[2.0, 0.5, 0.0], [0.5, 1.0, 0.0], [0.0, 0.0, 3.0]])


def pointTerm(invR=None):
    p = EuclideanPoint([1.0, -2.0, 0.5], "p")
    r = EuclideanPoint([0.3, 0.1, -0.4], "r")
    term = ExpressionErrorTerm(p - r, invR)
    return term, p, r


class TestSquaredError:
    def test_raw(self):
        term, p, r = pointTerm(INV_R)
        e = p.evaluate() - r.evaluate()
        assert term.evaluateError() == pytest.approx(e @ INV_R @ e)
        assert term.getRawSquaredError() == pytest.approx(e @ INV_R @ e)
        np.testing.assert_allclose(term.error(), e)

    def test_weighted(self):
        term, _, _ = pointTerm(INV_R)
        term.setMEstimatorPolicy(FixedWeightMEstimator(0.5))
        weighted = term.evaluateError(useMEstimator=True)
        raw = term.getRawSquaredError()

        assert weighted == pytest.approx(0.5 * raw)
        assert term.getWeightedSquaredError() == pytest.approx(weighted)
        assert term.getSquaredError(False) == pytest.approx(raw)
        assert term.evaluateError(useMEstimator=False) == pytest.approx(raw)

    def test_weightedError(self):
        term, _, _ = pointTerm(INV_R)
        term.setMEstimatorPolicy(CauchyMEstimator(1.0))
        term.evaluateError()
        ew = term.getWeightedError(True)
        assert ew @ ew == pytest.approx(term.getWeightedSquaredError())

        e0 = term.getWeightedError(False)
        assert e0 @ e0 == pytest.approx(term.getRawSquaredError())

    def test_scalarExpression(self):
        s = Scalar(3.0)
        term = ExpressionErrorTerm(s - 1.0)
        assert term.dimension == 1
        assert term.evaluateError() == pytest.approx(4.0)


class TestJacobians:
    def test_analytic(self):
        term, p, r = pointTerm()
        term.evaluateError()
        jc = JacobianContainer(3)
        term.evaluateJacobians(jc)
        np.testing.assert_array_equal(jc.Jacobian(p), np.eye(3))
        np.testing.assert_array_equal(jc.Jacobian(r), -np.eye(3))

    def test_weightedJacobians(self):
        term, p, _ = pointTerm(INV_R)
        term.setMEstimatorPolicy(FixedWeightMEstimator(4.0))
        term.evaluateError()
        jc = JacobianContainer(3)
        term.getWeightedJacobians(jc, useMEstimator=True)

        # J_w^T J_w reflects the weight linearly
        Jw = jc.Jacobian(p)
        np.testing.assert_allclose(Jw.T @ Jw, 4.0 * INV_R)

    def test_numerical(self):
        C = rotationVariable(1)
        p = EuclideanPoint([1.0, 2.0, 3.0], "p")
        term = ExpressionErrorTerm(C * p - [0.5, 0.5, 0.5], INV_R)
        assert term.checkJacobiansNumerical(tolerance=1e-5)
        assert term.checkJacobiansFinite()

    def test_finiteDifference(self):
        term, p, r = pointTerm()
        jc = JacobianContainer(3)
        term.evaluateJacobiansFiniteDifference(jc)
        np.testing.assert_allclose(jc.Jacobian(p), np.eye(3), atol=1e-8)
        np.testing.assert_allclose(jc.Jacobian(r), -np.eye(3), atol=1e-8)

    def test_gradient(self):
        term, p, r = pointTerm(INV_R)
        term.evaluateError(False)
        gradient = term.evaluateGradient(False)
        e = p.evaluate() - r.evaluate()
        np.testing.assert_allclose(gradient.Jacobian(p), [2 * INV_R @ e])
        np.testing.assert_allclose(gradient.Jacobian(r), [-2 * INV_R @ e])


class TestHessian:
    def test_blocks(self):
        term, p, r = pointTerm(INV_R)
        p.columnBase = 0
        r.columnBase = 3
        term.evaluateError()

        H = np.zeros((6, 6))
        rhs = np.zeros(6)
        term.buildHessian(H, rhs, useMEstimator=False)

        e = p.evaluate() - r.evaluate()
        J = np.hstack((np.eye(3), -np.eye(3)))
        np.testing.assert_allclose(H, J.T @ INV_R @ J)
        np.testing.assert_allclose(rhs, -J.T @ INV_R @ e)

    def test_inactive(self):
        term, p, r = pointTerm()
        p.columnBase = 0
        r.setActive(False)
        term.evaluateError()

        H = np.zeros((3, 3))
        rhs = np.zeros(3)
        term.buildHessian(H, rhs)
        np.testing.assert_allclose(H, np.eye(3))

    def test_unassigned(self):
        term, _, _ = pointTerm()
        term.evaluateError()
        with pytest.raises(ValueError):
            term.buildHessian(np.zeros((6, 6)), np.zeros(6))


class TestNoiseModel:
    def test_sqrtInvR(self):
        term, _, _ = pointTerm(INV_R)
        L = term.sqrtInvR()
        np.testing.assert_allclose(L @ L.T, INV_R)

    def test_setSqrtInvR(self):
        term, _, _ = pointTerm()
        A = np.diag([1.0, 2.0, 3.0])
        term.setSqrtInvR(A)
        np.testing.assert_allclose(term.invR(), np.diag([1.0, 4.0, 9.0]))

    @pytest.mark.parametrize(
        "invR",
        [np.eye(2), np.array([[1.0, 2.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]), -np.eye(3)],
    )
    def test_invalid(self, invR):
        term, _, _ = pointTerm()
        with pytest.raises(ValueError):
            term.setInvR(invR)


class TestBookkeeping:
    def test_designVariables(self):
        term, p, r = pointTerm()
        assert term.numDesignVariables() == 2
        assert term.designVariable(0) is p
        assert term.designVariable(1) is r
        assert term.designVariables() == [p, r]

    def test_designVariableIndex(self):
        term, _, _ = pointTerm()
        with pytest.raises(IndexError):
            term.designVariable(2)

    def test_rowBase(self):
        term, _, _ = pointTerm()
        assert term.rowBase == -1
        term.setRowBase(4)
        assert term.rowBase == 4

    def test_mEstimatorPolicy(self):
        term, _, _ = pointTerm()
        assert term.getMEstimatorName() == "NoMEstimator"

        term.setMEstimatorPolicy(CauchyMEstimator(1.0))
        assert term.getMEstimatorName() == "CauchyMEstimator"
        assert term.getMEstimatorWeight(1.0) == pytest.approx(0.5)

        term.clearMEstimatorPolicy()
        term.clearMEstimatorPolicy()
        assert isinstance(term.getMEstimatorPolicy(), NoMEstimator)

    def test_badPolicy(self):
        term, _, _ = pointTerm()
        with pytest.raises(TypeError):
            term.setMEstimatorPolicy("huber")

    def test_badExpression(self):
        with pytest.raises(TypeError):
            ExpressionErrorTerm(RotationConstant(np.eye(3)))


class TestScalarNonSquared:
    def test_errorAndGradient(self):
        s = Scalar(2.0)
        term = ScalarNonSquaredErrorTerm(scalar.power(s, 2), weight=3.0)
        assert term.evaluateError() == pytest.approx(12.0)

        gradient = term.evaluateGradient(False)
        np.testing.assert_allclose(gradient.Jacobian(s), [[12.0]])

    def test_noHessian(self):
        s = Scalar(2.0)
        term = ScalarNonSquaredErrorTerm(s)
        term.evaluateError()
        with pytest.raises(NotImplementedError):
            term.buildHessian(np.zeros((1, 1)), np.zeros(1))

    def test_badExpression(self):
        with pytest.raises(TypeError):
            ScalarNonSquaredErrorTerm(EuclideanPoint([1.0, 2.0, 3.0]))

    def test_negativeErrorWithRobustPolicy(self):
        s = Scalar(-4.0)
        term = ScalarNonSquaredErrorTerm(s)
        term.setMEstimatorPolicy(HuberMEstimator(1.0))

        assert term.evaluateError() == pytest.approx(-2.0)
        assert term.getCurrentMEstimatorWeight() == pytest.approx(0.5)

        gradient = term.evaluateGradient(True)
        np.testing.assert_allclose(gradient.Jacobian(s), [[0.5]])
