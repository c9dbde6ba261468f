import unittest

import numpy as np

from filterflow.velocity_field import (FieldValidationError, PayloadError, VelocityField,
                                       trace_streamline)


def two_by_two():
    samples = np.array([[[1.0, 0.0], [2.0, 0.0]],
                        [[1.0, 0.0], [2.0, 0.0]]])
    return VelocityField(2, 2, (0.0, 1.0, 0.0, 1.0), samples)


def random_field(w=5, h=9, seed=3):
    rng = np.random.default_rng(seed)
    return VelocityField(w, h, (0.0, 2.0, -1.0, 1.0), rng.normal(size=(h, w, 2)))


class TestInterpolation(unittest.TestCase):
    def test_midpoint_of_two_by_two(self):
        vx, vy = two_by_two().interpolate(0.5, 0.5)
        self.assertAlmostEqual(vx, 1.5)
        self.assertAlmostEqual(vy, 0.0)

    def test_nodes_return_samples_exactly(self):
        f = random_field()
        for j in range(f.grid_height):
            for i in range(f.grid_width):
                x = f.x_min + i / (f.grid_width - 1) * f.width
                y = f.y_min + j / (f.grid_height - 1) * f.height
                vx, vy = f.interpolate(x, y)
                self.assertEqual(vx, f.samples[j, i, 0])
                self.assertEqual(vy, f.samples[j, i, 1])

    def test_outside_bounds_matches_nearest_boundary_point(self):
        f = random_field()
        cases = [
            ((-5.0, 0.3), (0.0, 0.3)),
            ((7.0, 0.3), (2.0, 0.3)),
            ((1.1, -4.0), (1.1, -1.0)),
            ((1.1, 4.0), (1.1, 1.0)),
            ((-1.0, 9.0), (0.0, 1.0)),
        ]
        for outside, edge in cases:
            self.assertEqual(f.interpolate(*outside), f.interpolate(*edge))
            # clamping is idempotent
            self.assertEqual(f.interpolate(*f.clamp(*outside)), f.interpolate(*edge))

    def test_nan_query_saturates_at_lower_edge(self):
        f = random_field()
        self.assertEqual(f.interpolate(float("nan"), 0.3), f.interpolate(f.x_min, 0.3))
        self.assertEqual(f.interpolate(1.1, float("nan")), f.interpolate(1.1, f.y_min))

    def test_continuity_inside_grid(self):
        f = random_field()
        rng = np.random.default_rng(11)
        eps = 1e-6
        bound = float(np.abs(f.samples).max()) * 8
        for _ in range(200):
            x = rng.uniform(f.x_min, f.x_max - 2 * eps)
            y = rng.uniform(f.y_min, f.y_max - 2 * eps)
            a = np.array(f.interpolate(x, y))
            b = np.array(f.interpolate(x + eps, y + eps))
            self.assertLess(np.abs(a - b).max(), bound * eps / min(f.width, f.height) * 10)

    def test_samples_are_read_only(self):
        f = two_by_two()
        with self.assertRaises(ValueError):
            f.samples[0, 0, 0] = 5.0


class TestValidation(unittest.TestCase):
    def test_rejects_small_grid(self):
        with self.assertRaises(FieldValidationError):
            VelocityField(1, 2, (0, 1, 0, 1), np.zeros((2, 1, 2)))

    def test_rejects_non_increasing_bounds(self):
        with self.assertRaises(FieldValidationError):
            VelocityField(2, 2, (1.0, 1.0, 0.0, 1.0), np.zeros((2, 2, 2)))
        with self.assertRaises(FieldValidationError):
            VelocityField(2, 2, (0.0, 1.0, 1.0, 0.0), np.zeros((2, 2, 2)))

    def test_rejects_shape_mismatch(self):
        with self.assertRaises(FieldValidationError):
            VelocityField(3, 2, (0, 1, 0, 1), np.zeros((3, 2, 2)))

    def test_rejects_nan_samples(self):
        samples = np.zeros((2, 2, 2))
        samples[1, 1, 0] = np.nan
        with self.assertRaises(FieldValidationError):
            VelocityField(2, 2, (0, 1, 0, 1), samples)


class TestPayload(unittest.TestCase):
    def test_payload_round_trip(self):
        f = random_field()
        g = VelocityField.from_payload(f.to_payload())
        self.assertEqual((g.grid_width, g.grid_height), (f.grid_width, f.grid_height))
        self.assertEqual(g.bounds, f.bounds)
        np.testing.assert_array_equal(g.samples, f.samples)
        self.assertFalse(g.synthetic)

    def test_accepts_short_key_aliases(self):
        obj = {"nx": 2, "ny": 2, "bounds": [0, 1, 0, 1],
               "field": [[[1, 0], [2, 0]], [[1, 0], [2, 0]]]}
        f = VelocityField.from_payload(obj)
        self.assertAlmostEqual(f.interpolate(0.5, 0.5)[0], 1.5)

    def test_missing_keys(self):
        obj = two_by_two().to_payload()
        for key in ("gridWidth", "gridHeight", "bounds", "samples"):
            broken = dict(obj)
            del broken[key]
            with self.assertRaises(PayloadError):
                VelocityField.from_payload(broken)

    def test_not_an_object(self):
        with self.assertRaises(PayloadError):
            VelocityField.from_payload([1, 2, 3])

    def test_overflowing_dimension_is_a_payload_error(self):
        obj = two_by_two().to_payload()
        obj["gridHeight"] = float("inf")
        with self.assertRaises(PayloadError):
            VelocityField.from_payload(obj)


class TestStreamline(unittest.TestCase):
    def test_uniform_flow_runs_to_outlet(self):
        samples = np.zeros((3, 3, 2))
        samples[..., 0] = 1.0
        f = VelocityField(3, 3, (0.0, 1.0, 0.0, 1.0), samples)
        pts = trace_streamline(f, 0.0, 0.5, step=0.1, max_steps=100)
        self.assertGreater(len(pts), 5)
        self.assertTrue(np.all(np.diff(pts[:, 0]) > 0))
        np.testing.assert_allclose(pts[:, 1], 0.5)
        self.assertLessEqual(pts[-1, 0], 1.0)

    def test_stalls_in_still_air(self):
        f = VelocityField(2, 2, (0, 1, 0, 1), np.zeros((2, 2, 2)))
        pts = trace_streamline(f, 0.5, 0.5)
        self.assertEqual(pts.shape, (1, 2))


if __name__ == '__main__':
    unittest.main()
