import unittest

from filterflow.config import SimulationConfig
from filterflow.session import SimulationSession, run_comparison
from filterflow.utils_time import VirtualClock


def small_config(**overrides):
    base = dict(total_wall_seconds=6.0, restart_delay_seconds=0.5,
                multi_air_count=10, multi_pathogen_count=30)
    base.update(overrides)
    return SimulationConfig(**base)


class TestSimulationSession(unittest.TestCase):
    def setUp(self):
        self.clock = VirtualClock()
        self.session = SimulationSession(cfg=small_config(), clock=self.clock, seed=7)

    def tearDown(self):
        self.session.close()

    def test_select_configures_shared_target(self):
        keys = self.session.select(["MERV13", "HEPA", "MERV13"])
        self.assertEqual(keys, ["MERV13", "HEPA"])
        self.assertEqual(self.session.sync.max_simulated_target, 230.0)
        self.assertEqual(self.session.sync.hook_count, 2)

    def test_unknown_filter_rejected(self):
        with self.assertRaises(ValueError):
            self.session.select(["HEPA", "MERV99"])

    def test_reselect_diffs_instances(self):
        self.session.select(["MERV13", "HEPA"])
        hepa = self.session.instances["HEPA"]
        merv13 = self.session.instances["MERV13"]
        self.session.select(["HEPA", "MERV7"])
        self.assertIs(self.session.instances["HEPA"], hepa)
        self.assertTrue(merv13.destroyed)
        self.assertEqual(set(self.session.instances), {"HEPA", "MERV7"})
        self.assertEqual(self.session.sync.max_simulated_target, 660.0)
        self.assertEqual(self.session.sync.hook_count, 2)

    def test_tick_attaches_fields_and_caps_dt(self):
        self.session.select(["MERV10"])
        self.assertTrue(self.session.wait_for_fields(timeout=10))
        self.assertEqual(self.session.tick(), 0.0)
        self.clock.advance(5.0)
        self.assertAlmostEqual(self.session.tick(), self.session.cfg.max_frame_seconds)
        inst = self.session.instances["MERV10"]
        self.assertIsNotNone(inst.field)
        self.assertEqual(inst.initial_pathogens, 30)

    def test_frames_and_metrics(self):
        self.session.select(["HEPA", "MERV15"])
        self.session.wait_for_fields(timeout=10)
        self.session.tick()
        self.assertEqual({f.filter_key for f in self.session.frames()}, {"HEPA", "MERV15"})
        metrics = self.session.metrics()
        self.assertEqual(metrics["HEPA"].initial_pathogens, 30)

    def test_full_cycle_and_restart(self):
        self.session.select(["HEPA", "MERV15"])
        self.session.wait_for_fields(timeout=10)
        while self.clock() <= 6.2:
            self.session.tick()
            self.clock.advance(0.1)
        self.assertTrue(self.session.all_complete())
        self.clock.advance(1.0)
        self.session.tick()
        self.assertEqual(self.session.sync.cycles, 1)
        self.assertFalse(self.session.all_complete())

    def test_close_tears_down(self):
        self.session.select(["HEPA"])
        inst = self.session.instances["HEPA"]
        self.session.close()
        self.assertTrue(inst.destroyed)
        self.assertEqual(self.session.sync.hook_count, 0)
        self.assertEqual(self.session.tick(), 0.0)


class TestRunComparison(unittest.TestCase):
    def test_comparison_results(self):
        cfg = small_config(total_wall_seconds=3.0)
        results = run_comparison(["HEPA", "MERV13"], cfg, frame_seconds=0.1,
                                 checkpoints=(0.25, 0.5, 1.0), seed=3)
        self.assertEqual(set(results), {"HEPA", "MERV13"})
        for key, r in results.items():
            fractions = [c["removalFraction"] for c in r["checkpoints"]]
            self.assertEqual([c["progress"] for c in r["checkpoints"]], [0.25, 0.5, 1.0])
            self.assertEqual(fractions, sorted(fractions), key)
            self.assertEqual(fractions[-1], 1.0)
            self.assertIsNotNone(r["completionMinutes"])
        frame_minutes = 0.1 / 3.0 * 230.0
        self.assertEqual(results["HEPA"]["timeToCompleteMinutes"], 30.0)
        self.assertLess(results["HEPA"]["completionMinutes"] - 30.0, frame_minutes + 1e-9)
        self.assertLess(results["MERV13"]["completionMinutes"] - 230.0, frame_minutes + 1e-9)
        # the fast filter was already done at the half-way checkpoint
        self.assertEqual(results["HEPA"]["checkpoints"][1]["removalFraction"], 1.0)


if __name__ == '__main__':
    unittest.main()
