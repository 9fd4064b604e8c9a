"""
Test the optimization problem and the problem manager
"""
import numpy as np
import pytest

from optexpr.errorterms import ExpressionErrorTerm
from optexpr.expressions.scalar import Scalar
from optexpr.expressions.vector import DesignVariableVector, EuclideanPoint
from optexpr.optimizers import ProblemManager
from optexpr.problem import OptimizationProblem


def chainProblem(nTerms=7):
    """
    A chain of points with relative-position error terms
    """
    rng = np.random.default_rng(12)
    points = [EuclideanPoint(rng.normal(size=3), f"p{ix}") for ix in range(nTerms + 1)]
    terms = [
        ExpressionErrorTerm(points[ix + 1] - points[ix] - [1.0, 0.0, 0.0])
        for ix in range(nTerms)
    ]
    problem = OptimizationProblem()
    problem.addErrorTerms(terms)
    return problem, points, terms


class TestOptimizationProblem:
    def test_addErrorTerms(self):
        problem, points, terms = chainProblem(3)
        assert problem.numErrorTerms == 3
        assert problem.numDesignVariables == 4
        # variables appear in traversal order; each term visits p[ix + 1] first
        assert problem.designVariables() == [points[1], points[0], points[2], points[3]]

    def test_designVariableOrder(self):
        p, q = EuclideanPoint([1.0, 0.0, 0.0], "p"), EuclideanPoint([0.0, 1.0, 0.0], "q")
        problem = OptimizationProblem()
        problem.addErrorTerms(ExpressionErrorTerm(-p + q))
        problem.addErrorTerms(ExpressionErrorTerm(q - p))
        assert problem.designVariables() == [p, q]

    def test_duplicates(self):
        problem, points, terms = chainProblem(2)
        problem.addErrorTerms(terms[0])
        problem.addDesignVariables(points)
        assert problem.numErrorTerms == 2
        assert problem.numDesignVariables == 3

    def test_remove(self):
        problem, points, terms = chainProblem(2)
        problem.rmErrorTerms(terms[0])
        problem.rmDesignVariables(points[0])
        problem.rmDesignVariables(points[0])
        assert problem.errorTerms() == [terms[1]]
        assert problem.designVariables() == points[1:]

    @pytest.mark.parametrize("obj", [1.0, "abc", np.zeros(3)])
    def test_addInvalid(self, obj):
        problem = OptimizationProblem()
        with pytest.raises(TypeError):
            problem.addDesignVariables(obj)
        with pytest.raises(TypeError):
            problem.addErrorTerms(obj)

    def test_print(self):
        problem, _, terms = chainProblem(2)
        problem.printDesignVariables()
        problem.printErrorTerms()


class TestProblemManager:
    def test_initialize(self):
        problem, points, terms = chainProblem(3)
        points[1].setActive(False)

        manager = ProblemManager()
        manager.setProblem(problem)
        assert not manager.isInitialized()
        manager.initialize()
        assert manager.isInitialized()

        assert manager.numOptParameters == 9
        assert manager.designVariables() == [points[0], points[2], points[3]]
        assert [p.columnBase for p in points] == [0, -1, 3, 6]
        assert [p.blockIndex for p in points] == [0, -1, 1, 2]
        assert [t.rowBase for t in terms] == [0, 3, 6]

    def test_noProblem(self):
        with pytest.raises(RuntimeError):
            ProblemManager().initialize()

    def test_notInitialized(self):
        problem, _, _ = chainProblem(2)
        manager = ProblemManager()
        manager.setProblem(problem)
        with pytest.raises(RuntimeError):
            manager.computeGradient()

    def test_badProblem(self):
        with pytest.raises(TypeError):
            ProblemManager().setProblem("problem")

    def test_gradient(self):
        problem, _, _ = chainProblem(4)
        manager = ProblemManager()
        manager.setProblem(problem)
        manager.initialize()

        J = manager.stackedJacobian()
        e = manager.stackedError()
        np.testing.assert_allclose(manager.computeGradient(), 2 * J.T @ e, atol=1e-12)
        assert manager.evaluateError() == pytest.approx(e @ e)

    @pytest.mark.parametrize("numThreads", [0, 2, 3, 16])
    def test_threadCount(self, numThreads):
        problem, _, _ = chainProblem(7)
        manager = ProblemManager()
        manager.setProblem(problem)
        manager.initialize()

        gradient = manager.computeGradient(1)
        error = manager.evaluateError(1)
        np.testing.assert_allclose(
            manager.computeGradient(numThreads), gradient, rtol=1e-12, atol=1e-12
        )
        assert manager.evaluateError(numThreads) == pytest.approx(error, rel=1e-14)

    def test_stateUpdate(self):
        a = Scalar(1.0, "a")
        v = DesignVariableVector([1.0, 2.0], "v")
        problem = OptimizationProblem()
        problem.addErrorTerms([ExpressionErrorTerm(a - 2.0), ExpressionErrorTerm(v)])

        manager = ProblemManager()
        manager.setProblem(problem)
        manager.initialize()

        manager.applyStateUpdate([0.5, 1.0, -1.0])
        assert a.getParameters() == pytest.approx(1.5)
        np.testing.assert_allclose(v.getParameters(), [2.0, 1.0])

        manager.revertLastStateUpdate()
        assert a.getParameters() == pytest.approx(1.0)
        np.testing.assert_allclose(v.getParameters(), [1.0, 2.0])

        with pytest.raises(ValueError):
            manager.applyStateUpdate([1.0, 2.0])

    def test_hessian(self):
        problem, _, _ = chainProblem(3)
        manager = ProblemManager()
        manager.setProblem(problem)
        manager.initialize()

        H, rhs = manager.buildHessian()
        J = manager.stackedJacobian()
        e = manager.stackedError()
        np.testing.assert_allclose(H, J.T @ J, atol=1e-12)
        np.testing.assert_allclose(H, H.T)
        np.testing.assert_allclose(rhs, -J.T @ e, atol=1e-12)
