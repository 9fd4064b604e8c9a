"""
Test expression nodes
"""
import numpy as np
import pytest
from scipy.linalg import expm
from conftest import randomRotation, rotationVariable, transformationVariable

import optexpr.expressions.homogeneous as homogeneous
import optexpr.expressions.quaternion as quaternion
import optexpr.expressions.scalar as scalar
import optexpr.expressions.vector as vector
from optexpr.expressions import checkJacobians, numericJacobians
from optexpr.expressions.matrix import MatrixConstant, MatrixTransformation
from optexpr.expressions.rotation import (
    RotatedVector,
    RotationConstant,
    RotationProduct,
)
from optexpr.expressions.scalar import (
    NamedScalarConstant,
    Scalar,
    ScalarConstant,
    ScalarPower,
)
from optexpr.expressions.transformation import TransformationConstant
from optexpr.expressions.vector import (
    DesignVariableVector,
    EuclideanConstant,
    EuclideanPoint,
    VectorElement,
)
from optexpr.jacobians import JacobianContainer


def _s(value=0.7, name="s"):
    return Scalar(value, name)


def _p(seed=0, name="p"):
    return EuclideanPoint(np.random.default_rng(seed).normal(size=3), name)


def _q(seed=0, name="q"):
    return DesignVariableVector(np.random.default_rng(seed).normal(size=4), name)


# Each case builds a fresh expression; design variables are created inside so
# that tests do not share state.
SCALAR_CASES = {
    "add": lambda: _s(0.7) + _s(-1.3, "t"),
    "sub": lambda: _s(0.7) - _s(-1.3, "t"),
    "mul": lambda: _s(0.7) * _s(-1.3, "t"),
    "div": lambda: _s(0.7) / _s(-1.3, "t"),
    "neg": lambda: -_s(),
    "constMul": lambda: 3.0 * _s() - 2.0,
    "sqrt": lambda: scalar.sqrt(_s(2.0)),
    "log": lambda: scalar.log(_s(2.0)),
    "exp": lambda: scalar.exp(_s()),
    "sin": lambda: scalar.sin(_s()),
    "cos": lambda: scalar.cos(_s()),
    "atan": lambda: scalar.atan(_s()),
    "tanh": lambda: scalar.tanh(_s()),
    "acos": lambda: scalar.acos(_s(0.3)),
    "acosSquared": lambda: scalar.acosSquared(_s(0.3)),
    "inverseSigmoid": lambda: scalar.inverseSigmoid(_s(0.4), 2.0, 3.0, 0.5),
    "power": lambda: scalar.power(_s(1.3), 3),
    "atan2": lambda: scalar.atan2(_s(0.7), _s(-1.3, "t")),
    "dot": lambda: _p(0).dot(_p(1, "r")),
    "element": lambda: _p(0).element(2),
    "nested": lambda: scalar.sin(_s() * _s(2.0, "t")) / (1.0 + scalar.exp(_s(0.2, "u"))),
}

VECTOR_CASES = {
    "add": lambda: _p(0) + _p(1, "r"),
    "sub": lambda: _p(0) - _p(1, "r"),
    "neg": lambda: -_p(0),
    "scale": lambda: _p(0) * _s(),
    "scaleLeft": lambda: _s() * _p(0),
    "elementwise": lambda: vector.elementwiseProduct(_p(0), _p(1, "r")),
    "cross": lambda: _p(0).cross(_p(1, "r")),
    "crossConst": lambda: vector.cross([1.0, 2.0, 3.0], _p(1)),
    "rotated": lambda: rotationVariable(0) * _p(1),
    "rotatedConst": lambda: RotationConstant(randomRotation(4)) * _p(1),
    "rotatedInverse": lambda: rotationVariable(0).inverse() * _p(1),
    "rotatedProduct": lambda: (rotationVariable(0) * rotationVariable(1, "D")) * _p(2),
    "matrixTimesVector": lambda: MatrixTransformation(
        np.arange(9.0).reshape((3, 3)), name="A"
    )
    * _p(1),
    "matrixPattern": lambda: MatrixTransformation(
        np.eye(3), [[1, 1, 0], [0, 0, 0], [0, 0, 1]], name="A"
    )
    * _p(1),
    "toHomogeneous": lambda: homogeneous.toHomogeneous(_p(0)),
    "toEuclidean": lambda: homogeneous.toEuclidean(
        homogeneous.HomogeneousPoint([1.0, 2.0, 3.0, 0.5], "h")
    ),
    "transformedPoint": lambda: transformationVariable(0)[0] * _p(1),
    "transformedHomogeneous": lambda: transformationVariable(0)[0]
    * homogeneous.HomogeneousPoint([1.0, -2.0, 3.0, 0.7], "h"),
    "translation": lambda: transformationVariable(0)[0].toEuclideanExpression(),
    "quatProduct": lambda: quaternion.quaternionProduct(_q(0), _q(1, "r")),
    "quatConjugate": lambda: quaternion.conjugate(_q(0)),
    "quatInverse": lambda: quaternion.inverse(_q(0)),
    "quatRotate": lambda: quaternion.rotate3Vector(_q(0), _p(1)),
    "quatChain": lambda: quaternion.quaternionProduct(
        quaternion.inverse(_q(0)), quaternion.conjugate(_q(1, "r"))
    ),
}

ROTATION_CASES = {
    "quaternion": lambda: rotationVariable(0),
    "product": lambda: rotationVariable(0) * rotationVariable(1, "D"),
    "inverse": lambda: rotationVariable(0).inverse(),
    "constProduct": lambda: RotationConstant(randomRotation(3)) * rotationVariable(0),
    "fromTransformation": lambda: transformationVariable(0)[0].toRotationExpression(),
}

TRANSFORMATION_CASES = {
    "basic": lambda: transformationVariable(0)[0],
    "product": lambda: transformationVariable(0)[0] * transformationVariable(1, "U")[0],
    "inverse": lambda: transformationVariable(0)[0].inverse(),
    "constProduct": lambda: TransformationConstant.fromRotationTranslation(
        randomRotation(5), [1.0, 2.0, 3.0]
    )
    * transformationVariable(0)[0],
    "farProduct": lambda: TransformationConstant.fromRotationTranslation(
        randomRotation(4), [40.0, -25.0, 60.0]
    )
    * transformationVariable(0)[0],
}


class TestJacobians:
    @pytest.mark.parametrize("name", SCALAR_CASES.keys())
    def test_scalar(self, name):
        assert checkJacobians(SCALAR_CASES[name](), rtol=1e-5, atol=1e-7)

    @pytest.mark.parametrize("name", VECTOR_CASES.keys())
    def test_vector(self, name):
        assert checkJacobians(VECTOR_CASES[name](), rtol=1e-5, atol=1e-7)

    @pytest.mark.parametrize("name", ROTATION_CASES.keys())
    def test_rotation(self, name):
        assert checkJacobians(ROTATION_CASES[name](), rtol=1e-5, atol=1e-7)

    @pytest.mark.parametrize("name", TRANSFORMATION_CASES.keys())
    def test_transformation(self, name):
        assert checkJacobians(TRANSFORMATION_CASES[name](), rtol=1e-5, atol=1e-7)

    def test_printTable(self):
        assert checkJacobians(_p(0).cross(_p(1, "r")), printTable=True)


class TestChainRule:
    def test_rotationChain(self):
        # C (A p) with constant C and A: the Jacobian is C @ A
        C = randomRotation(1)
        A = np.arange(9.0).reshape((3, 3))
        p = _p(0)
        expr = RotationConstant(C) * (MatrixConstant(A) * p)

        expr.evaluate()
        jc = JacobianContainer(3)
        expr.evaluateJacobians(jc)
        np.testing.assert_allclose(jc.Jacobian(p), C @ A, atol=1e-12)

    def test_sharedSubexpression(self):
        # p + C p reaches p through two paths
        C = rotationVariable(2)
        p = _p(0)
        expr = p + C * p

        expr.evaluate()
        jc = JacobianContainer(3)
        expr.evaluateJacobians(jc)
        np.testing.assert_allclose(
            jc.Jacobian(p), np.eye(3) + C.evaluate(), atol=1e-12
        )

        # Swapping the operands does not change the result
        expr2 = C * p + p
        expr2.evaluate()
        jc2 = JacobianContainer(3)
        expr2.evaluateJacobians(jc2)
        np.testing.assert_allclose(jc2.Jacobian(p), jc.Jacobian(p), atol=1e-12)

    def test_applyChainRule(self):
        p = _p(0)
        p.evaluate()
        jc = JacobianContainer(1)
        p.evaluateJacobians(jc, np.array([[1.0, 2.0, 3.0]]))
        np.testing.assert_array_equal(jc.Jacobian(p), [[1.0, 2.0, 3.0]])
        assert jc.chainRuleEmpty()

    def test_inactive(self):
        p, r = _p(0), _p(1, "r")
        r.setActive(False)
        expr = p.cross(r)
        expr.evaluate()
        jc = JacobianContainer(3)
        expr.evaluateJacobians(jc)
        assert jc.designVariables() == [p]
        np.testing.assert_allclose(numericJacobians(expr).shape, (3, 3))


class TestValues:
    def test_scalarOps(self):
        s, t = _s(2.0), _s(-3.0, "t")
        assert (s + t).toScalar() == pytest.approx(-1.0)
        assert (s - t).toScalar() == pytest.approx(5.0)
        assert (s * t).toScalar() == pytest.approx(-6.0)
        assert (s / t).toScalar() == pytest.approx(-2.0 / 3.0)
        assert (-s).toScalar() == pytest.approx(-2.0)
        assert scalar.power(s, 3).toScalar() == pytest.approx(8.0)
        assert scalar.atan2(s, t).toScalar() == pytest.approx(np.arctan2(2.0, -3.0))

    def test_inverseSigmoid(self):
        expr = scalar.inverseSigmoid(_s(0.5), height=2.0, scale=3.0, shift=0.5)
        assert expr.toScalar() == pytest.approx(1.0)

    def test_acosSquaredLimit(self):
        s = _s(1.0)
        expr = scalar.acosSquared(s)
        assert expr.toScalar() == pytest.approx(0.0)
        jc = JacobianContainer(1)
        expr.evaluateJacobians(jc)
        assert jc.Jacobian(s)[0, 0] == pytest.approx(-2.0)

    def test_piecewise(self):
        flag = {"first": True}
        s = _s(2.0)
        expr = scalar.piecewise(s * 3.0, -s, lambda: flag["first"])

        assert expr.toScalar() == pytest.approx(6.0)
        jc = JacobianContainer(1)
        expr.evaluateJacobians(jc)
        assert jc.Jacobian(s)[0, 0] == pytest.approx(3.0)

        flag["first"] = False
        assert expr.toScalar() == pytest.approx(-2.0)
        jc = JacobianContainer(1)
        expr.evaluateJacobians(jc)
        assert jc.Jacobian(s)[0, 0] == pytest.approx(-1.0)

    def test_namedConstant(self):
        c = NamedScalarConstant("gain", 2.0)
        s = _s(3.0)
        expr = c * s
        assert expr.toScalar() == pytest.approx(6.0)
        c.value = 4.0
        assert expr.toScalar() == pytest.approx(12.0)
        assert expr.designVariables() == [s]

    def test_vectorOps(self):
        p = EuclideanPoint([1.0, 2.0, 3.0])
        r = EuclideanPoint([4.0, 5.0, 6.0])
        np.testing.assert_array_equal((p + r).toValue(), [5.0, 7.0, 9.0])
        np.testing.assert_array_equal((p - r).toValue(), [-3.0, -3.0, -3.0])
        np.testing.assert_array_equal((2.0 * p).toValue(), [2.0, 4.0, 6.0])
        np.testing.assert_array_equal(p.cross(r).toValue(), np.cross([1, 2, 3], [4, 5, 6]))
        assert p.dot(r).toScalar() == pytest.approx(32.0)

    def test_homogeneous(self):
        h = homogeneous.HomogeneousPoint([2.0, 4.0, 6.0, 2.0])
        np.testing.assert_allclose(h.toEuclidean().toValue(), [1.0, 2.0, 3.0])
        np.testing.assert_array_equal(
            homogeneous.HomogeneousPoint.fromEuclidean([1.0, 2.0, 3.0]).evaluate(),
            [1.0, 2.0, 3.0, 1.0],
        )

    def test_transformation(self):
        T, C, t = transformationVariable(3)
        p = np.array([0.5, -1.0, 2.0])
        expected = C.evaluate() @ p + t.evaluate()
        np.testing.assert_allclose((T * p).toValue(), expected)
        np.testing.assert_allclose((T * np.append(p, 1.0)).toValue()[:3], expected)
        np.testing.assert_allclose(
            (T.inverse() * T).toTransformationMatrix(), np.eye(4), atol=1e-12
        )

    def test_quaternionRotate(self):
        C = rotationVariable(6)
        p = np.array([1.0, 2.0, 3.0])
        expr = quaternion.rotate3Vector(C.quaternion, p)
        np.testing.assert_allclose(expr.toValue(), C.evaluate() @ p, atol=1e-12)

    def test_quaternionInverse(self):
        q = _q(2)
        expr = quaternion.quaternionProduct(q, quaternion.inverse(q))
        np.testing.assert_allclose(expr.toValue(), [0.0, 0.0, 0.0, 1.0], atol=1e-12)


class TestGraph:
    def test_designVariables(self):
        p, r = _p(0), _p(1, "r")
        C = rotationVariable(2)
        expr = (C * p).cross(r) + p
        assert expr.designVariables() == [C, p, r]

    def test_constants(self):
        expr = EuclideanConstant([1.0, 2.0, 3.0]) + ScalarConstant(2.0) * EuclideanConstant(
            [1.0, 1.0, 1.0]
        )
        assert expr.designVariables() == []
        np.testing.assert_array_equal(expr.toValue(), [3.0, 4.0, 5.0])
        assert numericJacobians(expr).shape == (3, 0)

    def test_elementIndex(self):
        with pytest.raises(IndexError):
            VectorElement(_p(0), 3)

    def test_powerExponent(self):
        with pytest.raises(TypeError):
            ScalarPower(_s(), 1.5)

    @pytest.mark.parametrize(
        "factory",
        [
            lambda: RotatedVector(rotationVariable(0), DesignVariableVector([1.0, 2.0])),
            lambda: RotationProduct(rotationVariable(0), "C"),
            lambda: quaternion.conjugate(_p(0)),
            lambda: _p(0) + DesignVariableVector([1.0, 2.0]),
        ],
    )
    def test_badOperands(self, factory):
        with pytest.raises((TypeError, ValueError)):
            factory()


class TestTransformationDifference:
    @staticmethod
    def _exp(xi):
        hat = np.zeros((4, 4))
        hat[:3, :3] = [[0, -xi[5], xi[4]], [xi[5], 0, -xi[3]], [-xi[4], xi[3], 0]]
        hat[:3, 3] = xi[:3]
        return expm(hat)

    @pytest.mark.parametrize(
        "xi",
        [
            [0.1, -0.2, 0.3, 0.0, 0.0, 0.0],
            [5.0, -3.0, 8.0, 0.4, -0.9, 1.2],
            [1e-3, 2e-3, -1e-3, 1e-7, 0.0, -2e-7],
        ],
    )
    def test_recoversTangent(self, xi):
        T = transformationVariable(3)[0]
        b = T.evaluate()
        a = self._exp(np.asarray(xi)) @ b
        np.testing.assert_allclose(T.tangentDifference(a, b), xi, atol=1e-9)

    def test_identical(self):
        T = transformationVariable(2)[0]
        np.testing.assert_allclose(
            T.tangentDifference(T.evaluate(), T.evaluate()), np.zeros(6), atol=1e-12
        )
