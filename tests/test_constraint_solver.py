import unittest

import numpy as np

from twist_controller.constraint_solver import (
    MAX_JOINT_WEIGHT, ConstraintSolverFactory, DampedWeightedPseudoInverse, SolverStatus,
    UnweightedPseudoInverse, calculate_weighting, compute_damping, invert_singular_values,
)
from twist_controller.kinematics import SerialChainModel, create_six_axis_config
from twist_controller.solver_params import SolverMethod, SolverParameters

from .helpers import well_conditioned_jacobian

TWIST = np.array([0.1, -0.2, 0.3, 0.05, 0.0, 0.1])


class TestCalculateWeighting(unittest.TestCase):
    def setUp(self):
        self.limits = np.array([[-1.0, 1.0], [-1.0, 1.0]])

    def test_no_limits(self):
        np.testing.assert_array_equal(
            calculate_weighting(np.array([0.9, 0.0]), np.array([1.0, 0.0]), None, 2), np.ones(2))

    def test_only_motion_toward_limit_is_penalized(self):
        toward = calculate_weighting(np.array([0.9, -0.9]), np.array([0.1, -0.1]), self.limits, 2)
        away = calculate_weighting(np.array([0.9, -0.9]), np.array([-0.1, 0.1]), self.limits, 2)
        self.assertTrue(np.all(toward > 1.0))
        np.testing.assert_array_equal(away, np.ones(2))

    def test_weight_grows_near_limit(self):
        near = calculate_weighting(np.array([0.95, 0.0]), np.array([0.1, 0.0]), self.limits, 2)
        far = calculate_weighting(np.array([0.5, 0.0]), np.array([0.1, 0.0]), self.limits, 2)
        self.assertGreater(near[0], far[0])
        self.assertEqual(near[1], 1.0)

    def test_at_limit(self):
        out = calculate_weighting(np.array([1.0, -1.0]), np.array([0.1, -0.1]), self.limits, 2)
        np.testing.assert_array_equal(out, [MAX_JOINT_WEIGHT, MAX_JOINT_WEIGHT])
        back = calculate_weighting(np.array([1.0, -1.0]), np.array([-0.1, 0.1]), self.limits, 2)
        np.testing.assert_array_equal(back, np.ones(2))

    def test_base_columns_weigh_one(self):
        out = calculate_weighting(np.array([0.9, 0.9]), np.array([0.1, 0.1]), self.limits, 5)
        self.assertEqual(out.shape, (5,))
        np.testing.assert_array_equal(out[2:], np.ones(3))


class TestDamping(unittest.TestCase):
    def test_none_and_constant(self):
        s = np.ones(6)
        self.assertEqual(compute_damping(SolverParameters(damping_method="none"), s), 0.0)
        self.assertAlmostEqual(
            compute_damping(SolverParameters(damping_method="constant", damping_factor=0.02), s), 0.02)

    def test_manipulability(self):
        params = SolverParameters(damping_method="manipulability", lambda_max=0.1, w_threshold=0.005)
        self.assertEqual(compute_damping(params, np.ones(6)), 0.0)
        s = np.array([1.0, 1.0, 1.0, 1.0, 1.0, 0.001])
        self.assertAlmostEqual(compute_damping(params, s), 0.1 * (1.0 - 0.2) ** 2)
        # Structurally zero trailing values of a redundant chain are ignored
        s_redundant = np.concatenate([np.ones(6), np.zeros(3)])
        self.assertEqual(compute_damping(params, s_redundant), 0.0)

    def test_least_singular_value(self):
        params = SolverParameters(damping_method="least_singular_value", lambda_max=0.1, eps=0.001)
        self.assertEqual(compute_damping(params, np.ones(6)), 0.0)
        s = np.array([1.0, 1.0, 1.0, 1.0, 1.0, 0.0005])
        self.assertAlmostEqual(compute_damping(params, s), 0.1 * np.sqrt(0.75))

    def test_displacement_term(self):
        delta = np.array([0.03, 0.04, 0.0, 0.0, 0.0, 0.0])
        params = SolverParameters(damping_method="none", displacement_gain=2.0).with_delta(delta)
        self.assertAlmostEqual(compute_damping(params, np.ones(6)), 0.1)

        params = SolverParameters(
            damping_method="constant", damping_factor=0.01, displacement_gain=2.0).with_delta(delta)
        self.assertAlmostEqual(compute_damping(params, np.ones(6)), np.sqrt(0.01 ** 2 + 0.1 ** 2))

    def test_invert_singular_values(self):
        s = np.array([2.0, 0.05, 0.0])
        np.testing.assert_allclose(invert_singular_values(s, 0.0, 0.1), [0.5, 0.0, 0.0])
        np.testing.assert_allclose(invert_singular_values(s, 0.1, 0.1), s / (s * s + 0.01))


class TestStrategies(unittest.TestCase):
    def test_damped_exact_without_damping(self):
        jac = well_conditioned_jacobian(6)
        params = SolverParameters(damping_method="none")
        result = DampedWeightedPseudoInverse().solve(params, jac, TWIST, np.zeros(6), np.zeros(6), None)
        self.assertEqual(result.status, SolverStatus.SUCCESS)
        np.testing.assert_allclose(jac @ result.qdot, TWIST, atol=1e-9)

    def test_unweighted_exact(self):
        jac = well_conditioned_jacobian(6)
        params = SolverParameters(method="unweighted")
        result = UnweightedPseudoInverse().solve(params, jac, TWIST, np.zeros(6), np.zeros(6), None)
        self.assertEqual(result.status, SolverStatus.SUCCESS)
        np.testing.assert_allclose(jac @ result.qdot, TWIST, atol=1e-9)

    def test_singular_jacobian_stays_bounded(self):
        twist = np.ones(6)
        for last in (0.0, 1e-8):
            jac = np.diag([1.0, 1.0, 1.0, 1.0, 1.0, last])
            with self.subTest(last_singular_value=last):
                damped = DampedWeightedPseudoInverse().solve(
                    SolverParameters(damping_method="constant", damping_factor=0.01),
                    jac, twist, np.zeros(6), np.zeros(6), None)
                self.assertEqual(damped.status, SolverStatus.SUCCESS)
                self.assertTrue(np.all(np.isfinite(damped.qdot)))
                self.assertLessEqual(abs(damped.qdot[5]), 1.0 / (2.0 * 0.01))

                plain = UnweightedPseudoInverse().solve(
                    SolverParameters(method="unweighted", eps=1e-3),
                    jac, twist, np.zeros(6), np.zeros(6), None)
                self.assertEqual(plain.status, SolverStatus.SUCCESS)
                self.assertLessEqual(np.max(np.abs(plain.qdot)), 1.0 / 1e-3)
                self.assertEqual(plain.qdot[5], 0.0)

    def test_stretched_out_chain(self):
        model = SerialChainModel(create_six_axis_config())
        jac = model.jacobian(np.zeros(6))
        q = np.zeros(6)
        for strategy, params in (
            (DampedWeightedPseudoInverse(), SolverParameters()),
            (DampedWeightedPseudoInverse(), SolverParameters(damping_method="least_singular_value")),
            (UnweightedPseudoInverse(), SolverParameters(method="unweighted")),
        ):
            with self.subTest(strategy=type(strategy).__name__, damping=params.damping_method.value):
                result = strategy.solve(params, jac, TWIST, q, q, model.joint_limits)
                self.assertEqual(result.status, SolverStatus.SUCCESS)
                self.assertTrue(np.all(np.isfinite(result.qdot)))
                self.assertLessEqual(np.linalg.norm(result.qdot), np.linalg.norm(TWIST) / params.eps)

    def test_redundant_and_augmented_jacobians(self):
        rng = np.random.default_rng(5)
        for num_columns in (7, 9, 10):
            jac = rng.standard_normal((6, num_columns))
            for strategy, params in (
                (DampedWeightedPseudoInverse(), SolverParameters(damping_method="none")),
                (UnweightedPseudoInverse(), SolverParameters(method="unweighted")),
            ):
                with self.subTest(columns=num_columns, strategy=type(strategy).__name__):
                    result = strategy.solve(
                        params, jac, TWIST, np.zeros(num_columns), np.zeros(num_columns), None)
                    self.assertEqual(result.status, SolverStatus.SUCCESS)
                    np.testing.assert_allclose(jac @ result.qdot, TWIST, atol=1e-9)

    def test_joint_limit_avoidance_slows_joint_near_limit(self):
        jac = well_conditioned_jacobian(7)
        limits = np.tile([-1.0, 1.0], (7, 1))
        q = np.zeros(7)
        q[6] = 0.95
        last_q_dot = np.zeros(7)
        last_q_dot[6] = 0.5

        plain = DampedWeightedPseudoInverse().solve(
            SolverParameters(damping_method="none", joint_limit_avoidance=False),
            jac, TWIST, q, last_q_dot, limits)
        weighted = DampedWeightedPseudoInverse().solve(
            SolverParameters(damping_method="none", joint_limit_avoidance=True),
            jac, TWIST, q, last_q_dot, limits)

        self.assertLess(abs(weighted.qdot[6]), abs(plain.qdot[6]))
        np.testing.assert_allclose(jac @ weighted.qdot, TWIST, atol=1e-9)


class TestConstraintSolverFactory(unittest.TestCase):
    def setUp(self):
        self.factory = ConstraintSolverFactory()
        self.jac = well_conditioned_jacobian(6)
        self.q = np.zeros(6)

    def test_zero_twist_gives_zero_velocities(self):
        for method in ("damped_weighted", "unweighted"):
            with self.subTest(method=method):
                result = self.factory.solve(
                    SolverParameters(method=method), self.jac, np.zeros(6), self.q, self.q)
                self.assertEqual(result.status, SolverStatus.SUCCESS)
                np.testing.assert_array_equal(result.qdot, np.zeros(6))

    def test_base_columns(self):
        block = np.zeros((6, 3))
        block[0, 0] = block[1, 1] = block[5, 2] = 0.5
        jac = np.hstack([self.jac, block])
        result = self.factory.solve(SolverParameters(damping_method="none"), jac, TWIST, self.q, self.q)
        self.assertEqual(result.status, SolverStatus.SUCCESS)
        self.assertEqual(result.qdot.shape, (9,))
        np.testing.assert_allclose(jac @ result.qdot, TWIST, atol=1e-9)

    def test_pose_velocity_not_implemented(self):
        result = self.factory.solve(
            SolverParameters(method=SolverMethod.POSE_VELOCITY), self.jac, TWIST, self.q, self.q)
        self.assertEqual(result.status, SolverStatus.NOT_IMPLEMENTED)
        np.testing.assert_array_equal(result.qdot, np.zeros(6))

    def test_missing_strategy_does_not_fall_back(self):
        factory = ConstraintSolverFactory(strategies={SolverMethod.UNWEIGHTED: UnweightedPseudoInverse()})
        self.assertIsNone(factory.get_strategy(SolverMethod.DAMPED_WEIGHTED))
        result = factory.solve(SolverParameters(), self.jac, TWIST, self.q, self.q)
        self.assertEqual(result.status, SolverStatus.NOT_IMPLEMENTED)
        np.testing.assert_array_equal(result.qdot, np.zeros(6))

    def test_sweep_cap_is_numerical_failure(self):
        for method in ("damped_weighted", "unweighted"):
            with self.subTest(method=method):
                result = self.factory.solve(
                    SolverParameters(method=method, maxiter=1), self.jac, TWIST, self.q, self.q)
                self.assertEqual(result.status, SolverStatus.NUMERICAL_FAILURE)
                np.testing.assert_array_equal(result.qdot, np.zeros(6))

    def test_non_finite_jacobian_or_twist(self):
        jac = self.jac.copy()
        jac[0, 0] = np.nan
        result = self.factory.solve(SolverParameters(), jac, TWIST, self.q, self.q)
        self.assertEqual(result.status, SolverStatus.NUMERICAL_FAILURE)

        twist = TWIST.copy()
        twist[2] = np.inf
        result = self.factory.solve(SolverParameters(), self.jac, twist, self.q, self.q)
        self.assertEqual(result.status, SolverStatus.NUMERICAL_FAILURE)

    def test_invalid_input(self):
        params = SolverParameters()
        cases = {
            "jacobian rows": (np.zeros((5, 6)), TWIST, self.q, self.q),
            "twist size": (self.jac, np.zeros(5), self.q, self.q),
            "joint count": (self.jac, TWIST, np.zeros(4), np.zeros(4)),
            "last_q_dot size": (self.jac, TWIST, self.q, np.zeros(5)),
            "column count": (np.hstack([self.jac, np.zeros((6, 2))]), TWIST, self.q, self.q),
            "non-finite q": (self.jac, TWIST, np.full(6, np.nan), self.q),
        }
        for name, (jac, twist, q, qdot) in cases.items():
            with self.subTest(case=name):
                result = self.factory.solve(params, jac, twist, q, qdot)
                self.assertEqual(result.status, SolverStatus.INVALID_INPUT)
                self.assertFalse(np.any(result.qdot))

    def test_joint_limit_shape_mismatch(self):
        factory = ConstraintSolverFactory(joint_limits=np.tile([-1.0, 1.0], (5, 1)))
        result = factory.solve(SolverParameters(), self.jac, TWIST, self.q, self.q)
        self.assertEqual(result.status, SolverStatus.INVALID_INPUT)


if __name__ == "__main__":
    unittest.main()
