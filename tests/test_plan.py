"""
Tests for Plan Construction and Execution

Checks accuracy against direct summation, agreement between the tree
contexts and evaluation modes, permutation bookkeeping and error handling.
"""

import logging
import pytest
import numpy as np

from fmmplan.core import (
    DualTreeContext,
    FMMEvaluator,
    KernelMatrix,
    PlanConfig,
    SingleTreeContext,
    TreecodeEvaluator,
    make_plan,
)
from fmmplan.kernels import create_kernel


def relative_error(approx, exact):
    """Relative error in the 2-norm."""
    return np.linalg.norm(approx - exact) / np.linalg.norm(exact)


class TestPlanConfig:
    """Test suite for plan configuration."""

    def test_defaults(self):
        """Test the default configuration."""
        config = PlanConfig()
        assert config.evaluation_mode == 'fmm'
        assert config.expansion_order == 5
        assert config.theta == 0.5
        assert not config.print_tree
        assert config.tree_config.ncrit == config.ncrit

    @pytest.mark.parametrize("kwargs", [
        {'evaluation_mode': 'barnes-hut'},
        {'expansion_order': 0},
        {'expansion_order': -2},
        {'expansion_order': 2.5},
        {'expansion_order': True},
        {'theta': 0.0},
        {'theta': 1.5},
        {'ncrit': 0},
        {'max_depth': 0},
    ])
    def test_invalid(self, kwargs):
        """Test that invalid configuration values are rejected."""
        with pytest.raises(ValueError):
            PlanConfig(**kwargs)


class TestAccuracy:
    """Test suite for plan accuracy against direct summation."""

    @pytest.mark.parametrize("mode", ['fmm', 'treecode'])
    def test_laplace_3d(self, laplace, cloud_3d, mode):
        """Test 3D accuracy for both evaluation modes."""
        points, charges = cloud_3d
        matrix = KernelMatrix(laplace, points)
        plan = make_plan(matrix, PlanConfig(evaluation_mode=mode, expansion_order=10,
                                            ncrit=16))

        exact = matrix.matvec(charges)
        approx = plan.execute(charges)
        assert relative_error(approx, exact) < 1e-3

    @pytest.mark.parametrize("mode", ['fmm', 'treecode'])
    def test_laplace_2d(self, laplace_2d, cloud_2d, mode):
        """Test 2D accuracy for both evaluation modes."""
        points, charges = cloud_2d
        matrix = KernelMatrix(laplace_2d, points)
        plan = make_plan(matrix, PlanConfig(evaluation_mode=mode, expansion_order=12,
                                            ncrit=16))

        exact = matrix.matvec(charges)
        approx = plan.execute(charges)
        assert relative_error(approx, exact) < 1e-3

    def test_distinct_sources_and_targets(self, laplace, rng):
        """Test accuracy with separate source and target sets."""
        sources = rng.random((400, 3))
        targets = rng.random((300, 3)) * 2.0
        charges = rng.random(400)
        matrix = KernelMatrix(laplace, sources, targets)
        plan = make_plan(matrix, PlanConfig(expansion_order=10, ncrit=16))

        assert isinstance(plan.context, DualTreeContext)
        assert relative_error(plan.execute(charges), matrix.matvec(charges)) < 1e-3

    def test_points_far_from_origin(self, laplace, rng):
        """Test accuracy for a cloud far from the origin."""
        points = 1e5 + rng.random((500, 3))
        charges = rng.random(500)
        matrix = KernelMatrix(laplace, points)
        plan = make_plan(matrix, PlanConfig(expansion_order=10, ncrit=16))

        assert relative_error(plan.execute(charges), matrix.matvec(charges)) < 1e-3

    def test_error_decreases_with_order(self, laplace, cloud_3d):
        """Test that the error decreases with the expansion order."""
        points, charges = cloud_3d
        matrix = KernelMatrix(laplace, points)
        exact = matrix.matvec(charges)

        errors = [relative_error(make_plan(matrix, PlanConfig(expansion_order=p,
                                                              ncrit=16)).execute(charges),
                                 exact)
                  for p in (2, 5, 8)]
        assert errors[0] > errors[1] > errors[2]


class TestAgreement:
    """Test suite for agreement between plan variants."""

    def test_single_and_dual_tree_agree(self, laplace, cloud_3d):
        """Test that single and forced dual trees give the same results."""
        points, charges = cloud_3d
        matrix = KernelMatrix(laplace, points)
        single = make_plan(matrix, PlanConfig(expansion_order=6))
        dual = make_plan(matrix, PlanConfig(expansion_order=6, force_dual_tree=True))

        assert isinstance(single.context, SingleTreeContext)
        assert isinstance(dual.context, DualTreeContext)
        # Same points and configuration build the same trees
        np.testing.assert_allclose(single.execute(charges), dual.execute(charges),
                                   rtol=1e-10)

    def test_fmm_and_treecode_agree(self, laplace, cloud_3d):
        """Test that FMM and treecode agree."""
        points, charges = cloud_3d
        matrix = KernelMatrix(laplace, points)
        fmm = make_plan(matrix, PlanConfig(expansion_order=8, ncrit=16))
        treecode = make_plan(matrix, PlanConfig(evaluation_mode='treecode',
                                                expansion_order=8, ncrit=16))

        assert isinstance(fmm.evaluator, FMMEvaluator)
        assert isinstance(treecode.evaluator, TreecodeEvaluator)
        assert relative_error(fmm.execute(charges), treecode.execute(charges)) < 1e-3

    def test_execute_is_repeatable(self, laplace, cloud_3d):
        """Test that repeated execution gives identical results."""
        points, charges = cloud_3d
        plan = make_plan(KernelMatrix(laplace, points))
        assert np.array_equal(plan.execute(charges), plan.execute(charges))

    def test_execute_is_linear_in_charges(self, laplace, cloud_3d, rng):
        """Test that execution is linear in the charges."""
        points, charges = cloud_3d
        other = rng.standard_normal(len(charges))
        plan = make_plan(KernelMatrix(laplace, points))

        combined = plan.execute(2.0 * charges + other)
        separate = 2.0 * plan.execute(charges) + plan.execute(other)
        np.testing.assert_allclose(combined, separate, rtol=1e-9, atol=1e-9)


class TestSmallProblems:
    """Test suite for plans over tiny point sets."""

    def test_single_source_single_target(self, laplace):
        """Test that a one-point problem is exact."""
        matrix = KernelMatrix(laplace, np.array([[0.0, 0.0, 0.0]]),
                              np.array([[1.0, 2.0, 2.0]]))
        for mode in ('fmm', 'treecode'):
            plan = make_plan(matrix, PlanConfig(evaluation_mode=mode))
            result = plan.execute(np.array([3.0]))
            assert result[0] == pytest.approx(3.0 / (4 * np.pi * 3.0), rel=1e-14)

    def test_self_interaction_is_zero(self, laplace):
        """Test that a point does not interact with itself."""
        plan = make_plan(KernelMatrix(laplace, np.array([[0.5, 0.5, 0.5]])))
        np.testing.assert_array_equal(plan.execute(np.array([1.0])), [0.0])

    def test_all_near_field_is_exact(self, laplace, rng):
        """Test that a single-leaf plan matches direct summation."""
        points = rng.random((20, 3))
        charges = rng.random(20)
        matrix = KernelMatrix(laplace, points)
        plan = make_plan(matrix)

        assert plan.evaluator.interactions.far == []
        np.testing.assert_allclose(plan.execute(charges), matrix.matvec(charges),
                                   rtol=1e-12)


class TestPermutations:
    """Test suite for tree-order permutations."""

    def test_sources_and_targets_in_tree_order(self, laplace, rng):
        """Test that sources() and targets() follow the permutations."""
        sources = rng.random((300, 3))
        targets = rng.random((200, 3))
        plan = make_plan(KernelMatrix(laplace, sources, targets))

        np.testing.assert_array_equal(plan.sources(), sources[plan.source_permutation])
        np.testing.assert_array_equal(plan.targets(), targets[plan.target_permutation])

    def test_single_tree_shares_permutation(self, laplace, cloud_3d):
        """Test that a single tree uses one permutation."""
        points, _ = cloud_3d
        plan = make_plan(KernelMatrix(laplace, points))
        np.testing.assert_array_equal(plan.source_permutation, plan.target_permutation)
        np.testing.assert_array_equal(plan.sources(), plan.targets())

    def test_sources_returns_a_copy(self, laplace, cloud_3d):
        """Test that sources() returns a copy."""
        points, _ = cloud_3d
        plan = make_plan(KernelMatrix(laplace, points))
        copy = plan.sources()
        copy[:] = 0.0
        assert not np.array_equal(plan.sources(), copy)

    def test_results_in_original_order(self, laplace, rng):
        """Test that results come back in original target order."""
        sources = rng.random((100, 3))
        targets = rng.random((50, 3))
        charges = np.zeros(100)
        charges[17] = 1.0
        # One leaf per tree, so the whole product is near field
        plan = make_plan(KernelMatrix(laplace, sources, targets), PlanConfig(ncrit=128))

        expected = laplace.direct(sources[17:18], targets)[:, 0]
        np.testing.assert_allclose(plan.execute(charges), expected, rtol=1e-12)


class TestExecute:
    """Test suite for plan execution."""

    def test_accumulates_into_results(self, laplace, cloud_3d):
        """Test that a given results buffer is added to."""
        points, charges = cloud_3d
        plan = make_plan(KernelMatrix(laplace, points))
        expected = plan.execute(charges)

        results = np.full(len(points), 2.0)
        out = plan.execute(charges, results)
        assert out is results
        np.testing.assert_allclose(results, expected + 2.0)

    def test_operator_counts(self, laplace, cloud_3d):
        """Test which operators each evaluation mode applies."""
        points, charges = cloud_3d
        matrix = KernelMatrix(laplace, points)

        fmm = make_plan(matrix, PlanConfig(ncrit=16))
        fmm.execute(charges)
        assert fmm.evaluator.statistics['m2l'] > 0
        assert fmm.evaluator.statistics['l2p'] > 0
        assert fmm.evaluator.statistics['m2p'] == 0

        treecode = make_plan(matrix, PlanConfig(evaluation_mode='treecode', ncrit=16))
        treecode.execute(charges)
        assert treecode.evaluator.statistics['m2p'] > 0
        assert treecode.evaluator.statistics['m2l'] == 0
        assert treecode.evaluator.statistics['l2l'] == 0

    def test_wrong_charges_length(self, laplace, cloud_3d):
        """Test that the charge count is checked."""
        points, charges = cloud_3d
        plan = make_plan(KernelMatrix(laplace, points))
        with pytest.raises(ValueError):
            plan.execute(charges[:-1])

    def test_wrong_results_length(self, laplace, cloud_3d):
        """Test that the results length is checked."""
        points, charges = cloud_3d
        plan = make_plan(KernelMatrix(laplace, points))
        with pytest.raises(ValueError):
            plan.execute(charges, np.zeros(len(points) + 1))

    @pytest.mark.parametrize("dimension", [2, 3])
    def test_complex_charges_rejected(self, rng, dimension):
        """Test that charges the kernel cannot represent are rejected."""
        kernel = create_kernel('laplace', dimension=dimension)
        points = rng.random((200, dimension))
        charges = rng.random(200) + 1j * rng.random(200)
        plan = make_plan(KernelMatrix(kernel, points), PlanConfig(ncrit=16))
        with pytest.raises(ValueError):
            plan.execute(charges)
        with pytest.raises(ValueError):
            plan.execute(np.array(['a'] * 200))

    def test_integer_charges(self, laplace, cloud_3d):
        """Test that integer charges are accepted and give real results."""
        points, _ = cloud_3d
        plan = make_plan(KernelMatrix(laplace, points))
        ones = np.ones(len(points), dtype=np.int64)

        results = plan.execute(ones)
        assert results.dtype == laplace.result_dtype
        np.testing.assert_allclose(results, plan.execute(ones.astype(np.float64)),
                                   rtol=1e-14)


class TestContextSelection:
    """Test suite for tree context selection."""

    def test_same_object(self, laplace, rng):
        """Test that one array for both sides selects a single tree."""
        points = rng.random((50, 3))
        plan = make_plan(KernelMatrix(laplace, points, points))
        assert isinstance(plan.context, SingleTreeContext)
        assert plan.context.is_single_tree

    def test_equal_copy(self, laplace, rng):
        """Test that an equal copy selects a single tree."""
        points = rng.random((50, 3))
        plan = KernelMatrix(laplace, points, points.copy()).plan()
        assert isinstance(plan.context, SingleTreeContext)

    def test_different_points(self, laplace, rng):
        """Test that reordered points select dual trees."""
        points = rng.random((50, 3))
        plan = make_plan(KernelMatrix(laplace, points, points[::-1]))
        assert isinstance(plan.context, DualTreeContext)
        assert not plan.context.is_single_tree

    def test_force_dual_tree(self, laplace, rng):
        """Test that force_dual_tree overrides the selection."""
        points = rng.random((50, 3))
        plan = make_plan(KernelMatrix(laplace, points),
                         PlanConfig(force_dual_tree=True))
        assert isinstance(plan.context, DualTreeContext)

    def test_logs_context_choice(self, laplace, rng, caplog):
        """Test that the context choice is logged."""
        points = rng.random((50, 3))
        with caplog.at_level(logging.INFO):
            make_plan(KernelMatrix(laplace, points))
            make_plan(KernelMatrix(laplace, points, points + 1.0))
        assert "Using single tree context" in caplog.text
        assert "Using dual tree context" in caplog.text

    def test_print_tree(self, laplace, rng, caplog):
        """Test that print_tree logs both trees."""
        points = rng.random((50, 3))
        with caplog.at_level(logging.INFO):
            make_plan(KernelMatrix(laplace, points), PlanConfig(print_tree=True))
        assert "Source Tree:" in caplog.text
        assert "Target Tree:" in caplog.text
        assert "Tree(dim=3" in caplog.text

    def test_no_tree_output_by_default(self, laplace, rng, caplog):
        """Test that trees are not logged by default."""
        points = rng.random((50, 3))
        with caplog.at_level(logging.INFO):
            make_plan(KernelMatrix(laplace, points))
        assert "Source Tree:" not in caplog.text
