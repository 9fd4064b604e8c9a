"""
Test design variables
"""
import numpy as np
import pytest
from conftest import randomRotation

from optexpr.expressions.homogeneous import HomogeneousPoint
from optexpr.expressions.matrix import MatrixTransformation
from optexpr.expressions.rotation import RotationQuaternion
from optexpr.expressions.scalar import Scalar
from optexpr.expressions.vector import (
    DesignVariableVector,
    EuclideanPoint,
    MappedEuclideanPoint,
)


def makeVariable(kind):
    if kind == "scalar":
        return Scalar(1.5, "s")
    if kind == "vector":
        return DesignVariableVector([1.0, 2.0, 3.0, 4.0, 5.0], "v")
    if kind == "point":
        return EuclideanPoint([1.0, -2.0, 0.5], "p")
    if kind == "homogeneous":
        return HomogeneousPoint([1.0, 2.0, 3.0, 1.0], "h")
    if kind == "rotation":
        return RotationQuaternion.fromRotationMatrix(randomRotation(3), "C")
    if kind == "matrix":
        return MatrixTransformation(np.arange(9.0).reshape((3, 3)), name="A")
    raise ValueError(kind)


KINDS = ["scalar", "vector", "point", "homogeneous", "rotation", "matrix"]
DIMS = [1, 5, 3, 4, 3, 9]


class TestUpdateRevert:
    @pytest.mark.parametrize("kind, dim", zip(KINDS, DIMS))
    def test_minimalDimensions(self, kind, dim):
        assert makeVariable(kind).minimalDimensions == dim

    @pytest.mark.parametrize("kind", KINDS)
    def test_revert(self, kind):
        dv = makeVariable(kind)
        orig = np.array(dv.getParameters(), copy=True)

        dv.update(0.1 * np.ones(dv.minimalDimensions))
        assert not np.allclose(dv.getParameters(), orig)

        dv.revert()
        np.testing.assert_allclose(dv.getParameters(), orig)

    @pytest.mark.parametrize("kind", KINDS)
    def test_doubleRevert(self, kind):
        dv = makeVariable(kind)
        dv.update(0.1 * np.ones(dv.minimalDimensions))
        stepped = np.array(dv.getParameters(), copy=True)
        dv.update(0.2 * np.ones(dv.minimalDimensions))

        dv.revert()
        np.testing.assert_allclose(dv.getParameters(), stepped)
        dv.revert()
        np.testing.assert_allclose(dv.getParameters(), stepped)

    @pytest.mark.parametrize("kind", KINDS)
    def test_wrongSize(self, kind):
        dv = makeVariable(kind)
        with pytest.raises(ValueError):
            dv.update(np.zeros(dv.minimalDimensions + 1))

    @pytest.mark.parametrize("kind", ["vector", "point", "homogeneous", "rotation"])
    def test_minimalDifference(self, kind):
        dv = makeVariable(kind)
        orig = dv.getParameters()
        dx = 0.01 * np.arange(1, dv.minimalDimensions + 1)
        dv.update(dx)
        np.testing.assert_allclose(dv.minimalDifference(orig), dx, atol=1e-8)

    def test_setParameters(self):
        dv = EuclideanPoint([1.0, 2.0, 3.0])
        dv.setParameters([4.0, 5.0, 6.0])
        np.testing.assert_array_equal(dv.getParameters(), [4.0, 5.0, 6.0])
        dv.revert()
        np.testing.assert_array_equal(dv.getParameters(), [1.0, 2.0, 3.0])


class TestRotationQuaternion:
    def test_normalized(self):
        dv = RotationQuaternion([0.0, 0.0, 0.0, 2.0])
        np.testing.assert_array_equal(dv.quaternion, [0.0, 0.0, 0.0, 1.0])
        np.testing.assert_allclose(dv.evaluate(), np.eye(3))

    def test_zeroNorm(self):
        with pytest.raises(ValueError):
            RotationQuaternion([0.0, 0.0, 0.0, 0.0])

    def test_leftUpdate(self):
        C0 = randomRotation(7)
        dv = RotationQuaternion.fromRotationMatrix(C0)
        np.testing.assert_allclose(dv.evaluate(), C0, atol=1e-12)

        # a rotation of pi/2 about z, applied on the left
        dv.update([0.0, 0.0, np.pi / 2])
        Rz = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
        np.testing.assert_allclose(dv.evaluate(), Rz @ C0, atol=1e-12)

    def test_unitAfterUpdate(self):
        dv = RotationQuaternion.fromRotationMatrix(randomRotation(2))
        for _ in range(10):
            dv.update([0.3, -0.2, 0.1])
        assert np.linalg.norm(dv.quaternion) == pytest.approx(1.0)


class TestMatrixTransformation:
    def test_pattern(self):
        pattern = np.array([[1, 0, 0], [0, 1, 0], [0, 0, 0]])
        dv = MatrixTransformation(np.eye(3), pattern)
        assert dv.minimalDimensions == 2

        dv.update([0.5, -0.5])
        np.testing.assert_array_equal(dv.evaluate(), np.diag([1.5, 0.5, 1.0]))

    def test_badPattern(self):
        with pytest.raises(ValueError):
            MatrixTransformation(np.eye(3), 2 * np.eye(3))

    def test_columnMajor(self):
        dv = MatrixTransformation(np.zeros((3, 3)))
        step = np.zeros(9)
        step[1] = 1.0
        dv.update(step)
        assert dv.evaluate()[1, 0] == 1.0


class TestMappedEuclideanPoint:
    def test_sharedBuffer(self):
        buffer = np.array([1.0, 2.0, 3.0])
        dv = MappedEuclideanPoint(buffer)

        dv.update([1.0, 1.0, 1.0])
        np.testing.assert_array_equal(buffer, [2.0, 3.0, 4.0])

        dv.revert()
        np.testing.assert_array_equal(buffer, [1.0, 2.0, 3.0])

        buffer[0] = 10.0
        np.testing.assert_array_equal(dv.evaluate(), [10.0, 2.0, 3.0])

    @pytest.mark.parametrize(
        "buffer, err",
        [
            [[1.0, 2.0, 3.0], TypeError],
            [np.array([1, 2, 3]), TypeError],
            [np.zeros(4), ValueError],
        ],
    )
    def test_invalid(self, buffer, err):
        with pytest.raises(err):
            MappedEuclideanPoint(buffer)


class TestBookkeeping:
    def test_defaults(self):
        dv = Scalar(0.0)
        assert dv.isActive
        assert dv.blockIndex == -1
        assert dv.columnBase == -1

    def test_setters(self):
        dv = Scalar(0.0)
        dv.setActive(False)
        dv.blockIndex = 2
        dv.columnBase = 5
        assert not dv.isActive
        assert dv.blockIndex == 2
        assert dv.columnBase == 5
