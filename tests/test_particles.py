import unittest

import numpy as np

from filterflow.config import FilterParams, SimulationConfig
from filterflow.particles import (BoundaryMode, MotionModel, Particle, Species, StepParameters,
                                  fill_room, move, spawn_inlet)
from filterflow.stepping import advance
from filterflow.velocity_field import VelocityField


def uniform_field(vx=1.0, vy=0.0, bounds=(0.0, 1.0, 0.0, 0.5)):
    samples = np.zeros((2, 2, 2))
    samples[..., 0] = vx
    samples[..., 1] = vy
    return VelocityField(2, 2, bounds, samples)


def still_params(boundary=BoundaryMode.EXIT, model=MotionModel.ADVECTIVE, efficiency=0.0):
    # no turbulence, unit speed scale: motion is exactly u * dt
    return StepParameters(pressure_drop_fraction=0.1, removal_efficiency_percent=efficiency,
                          motion_model=model, boundary=boundary, visual_speed_scale=1.0,
                          turbulence_intensity=0.0, brownian_air=0.0, brownian_pathogen=0.0)


class TestSpawning(unittest.TestCase):
    def test_inlet_spawn_on_left_edge(self):
        f = uniform_field()
        rng = np.random.default_rng(0)
        cfg = SimulationConfig()
        ps = [spawn_inlet(i, f, rng, 0.2, cfg) for i in range(500)]
        self.assertTrue(all(p.x == f.x_min for p in ps))
        self.assertTrue(all(f.y_min <= p.y <= f.y_max for p in ps))
        share = sum(p.is_pathogen for p in ps) / len(ps)
        self.assertGreater(share, 0.1)
        self.assertLess(share, 0.3)

    def test_fill_room_counts_and_ids(self):
        f = uniform_field()
        cfg = SimulationConfig(multi_air_count=30, multi_pathogen_count=10)
        room = fill_room(5, f, np.random.default_rng(1), cfg)
        self.assertEqual(len(room), 40)
        self.assertEqual([p.id for p in room], list(range(5, 45)))
        self.assertEqual(sum(p.is_pathogen for p in room), 10)
        self.assertTrue(all(f.contains(p.x, p.y) for p in room))
        for p in room:
            self.assertAlmostEqual(np.hypot(p.vx, p.vy), cfg.multi_base_speed)


class TestMove(unittest.TestCase):
    def test_advective_follows_field(self):
        f = uniform_field(vx=1.0, vy=0.5)
        p = Particle(0, Species.AIR, 0.2, 0.1)
        q = move(p, f, 0.1, still_params(), np.random.default_rng(0))
        self.assertAlmostEqual(q.x, 0.3)
        self.assertAlmostEqual(q.y, 0.15)
        self.assertAlmostEqual(q.age, 0.1)

    def test_exit_past_outlet(self):
        f = uniform_field()
        p = Particle(0, Species.AIR, 0.99, 0.2)
        self.assertIsNone(move(p, f, 0.1, still_params(BoundaryMode.EXIT), np.random.default_rng(0)))

    def test_respawn_keeps_id(self):
        f = uniform_field()
        p = Particle(7, Species.PATHOGEN, 0.99, 0.2, age=3.0)
        q = move(p, f, 0.1, still_params(BoundaryMode.RESPAWN), np.random.default_rng(0))
        self.assertEqual(q.id, 7)
        self.assertEqual(q.x, f.x_min)
        self.assertEqual(q.age, 0.0)

    def test_wrap_recirculates(self):
        f = uniform_field()
        p = Particle(0, Species.AIR, 0.95, 0.2)
        q = move(p, f, 0.1, still_params(BoundaryMode.WRAP), np.random.default_rng(0))
        self.assertAlmostEqual(q.x, 0.05)

    def test_reflect_bounces(self):
        f = uniform_field(vx=0.0, vy=1.0)
        p = Particle(0, Species.AIR, 0.5, 0.45)
        q = move(p, f, 0.1, still_params(BoundaryMode.REFLECT), np.random.default_rng(0))
        self.assertAlmostEqual(q.y, 0.45)
        self.assertLess(q.vy, 0)

    def test_cross_stream_is_clamped(self):
        f = uniform_field(vx=0.0, vy=1.0)
        p = Particle(0, Species.AIR, 0.5, 0.45)
        q = move(p, f, 0.5, still_params(BoundaryMode.WRAP), np.random.default_rng(0))
        self.assertEqual(q.y, f.y_max)

    def test_lagrangian_lags_fluid(self):
        f = uniform_field(vx=1.0)
        params = still_params(BoundaryMode.WRAP, MotionModel.LAGRANGIAN)
        heavy = Particle(0, Species.PATHOGEN, 0.1, 0.2, inertia=5.0)
        light = Particle(1, Species.AIR, 0.1, 0.2, inertia=1.0)
        rng = np.random.default_rng(0)
        h = move(heavy, f, 0.01, params, rng)
        l = move(light, f, 0.01, params, rng)
        self.assertLess(h.vx, l.vx)
        self.assertLess(l.vx, 1.0)
        self.assertGreater(h.vx, 0.0)

    def test_lagrangian_stable_for_large_steps(self):
        f = uniform_field(vx=1.0)
        params = still_params(BoundaryMode.WRAP, MotionModel.LAGRANGIAN)
        p = Particle(0, Species.AIR, 0.1, 0.2, vx=-3.0)
        q = move(p, f, 1.0, params, np.random.default_rng(0))
        self.assertAlmostEqual(q.vx, 1.0, places=6)

    def test_captured_stays_put(self):
        f = uniform_field()
        p = Particle(0, Species.PATHOGEN, 0.5, 0.2, captured=True)
        q = move(p, f, 0.1, still_params(), np.random.default_rng(0))
        self.assertEqual((q.x, q.y), (0.5, 0.2))
        self.assertTrue(q.captured)


class TestAdvance(unittest.TestCase):
    def setUp(self):
        cfg = SimulationConfig()
        self.params = StepParameters.from_config(FilterParams(0.1, 85.0, 8), cfg,
                                                 boundary=BoundaryMode.WRAP)
        self.field = uniform_field()
        rng = np.random.default_rng(2)
        self.particles = fill_room(0, self.field, rng, SimulationConfig(multi_air_count=20,
                                                                        multi_pathogen_count=20))

    def test_same_seed_same_result(self):
        a = advance(self.particles, self.field, self.params, 0.03, seed=42)
        b = advance(self.particles, self.field, self.params, 0.03, seed=42)
        self.assertEqual(a, b)

    def test_no_field_is_a_no_op(self):
        self.assertEqual(advance(self.particles, None, self.params, 0.03, seed=1), self.particles)

    def test_zero_dt_is_a_no_op(self):
        self.assertEqual(advance(self.particles, self.field, self.params, 0.0, seed=1), self.particles)


if __name__ == '__main__':
    unittest.main()
