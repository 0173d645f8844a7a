"""
Hold tracker and unlock state tests.

Time is driven explicitly (100 ms cycles) so no test sleeps.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest


def _match(expression_id="smirk", similarity=90):
    from utils.expression_matcher import MatchResult
    from utils.reference_store import MemeTemplate
    meme = MemeTemplate(expression_id, expression_id.title(), f"/nailong/{expression_id}.png")
    return MatchResult(expression_id, meme, similarity, similarity)


def _tracker():
    from utils.hold_tracker import HoldTracker, HoldSettings
    return HoldTracker(HoldSettings(hold_duration_ms=3000.0, similarity_threshold=80.0))


class TestHoldTracker(unittest.TestCase):

    def test_unlock_after_31_cycles(self):
        """Holding for 31 cycles at 100 ms accumulates 3000 ms and unlocks exactly once."""
        tracker = _tracker()
        events = []
        for i in range(31):
            update = tracker.update(_match(), now_ms=i * 100.0)
            if update.unlock:
                events.append((i, update.unlock.expression_id))
            if i == 15:
                self.assertAlmostEqual(update.progress, 0.5)
        self.assertEqual(events, [(30, "smirk")])
        self.assertTrue(tracker.is_unlocked("smirk"))

    def test_no_second_unlock(self):
        tracker = _tracker()
        for i in range(31):
            tracker.update(_match(), now_ms=i * 100.0)
        for i in range(31, 80):
            update = tracker.update(_match(), now_ms=i * 100.0)
            self.assertIsNone(update.unlock)
            self.assertEqual(update.progress, 1.0)

    def test_first_cycle_has_no_elapsed_time(self):
        tracker = _tracker()
        update = tracker.update(_match(), now_ms=5000.0)
        self.assertEqual(update.accumulated_ms, 0.0)
        self.assertEqual(update.progress, 0.0)

    def test_dip_pauses_without_reset(self):
        tracker = _tracker()
        for i in range(10):
            tracker.update(_match(), now_ms=i * 100.0)
        self.assertAlmostEqual(tracker.progress("smirk"), 900.0 / 3000.0)

        # Face lost for a while: nothing accrues
        tracker.update(None, now_ms=1000.0)
        update = tracker.update(_match(), now_ms=5000.0)
        self.assertAlmostEqual(update.accumulated_ms, 900.0)
        update = tracker.update(_match(), now_ms=5100.0)
        self.assertAlmostEqual(update.accumulated_ms, 1000.0)

    def test_low_similarity_does_not_accumulate(self):
        tracker = _tracker()
        for i in range(50):
            update = tracker.update(_match(similarity=79), now_ms=i * 100.0)
            self.assertIsNone(update.unlock)
        self.assertEqual(tracker.progress("smirk"), 0.0)
        self.assertEqual(update.expression_id, "smirk")

    def test_switching_expressions(self):
        tracker = _tracker()
        t = 0.0
        for _ in range(5):
            tracker.update(_match("smirk"), now_ms=t)
            t += 100.0
        for _ in range(3):
            tracker.update(_match("angry"), now_ms=t)
            t += 100.0
        self.assertAlmostEqual(tracker.snapshot()["smirk"]["accumulatedMs"], 400.0)
        self.assertAlmostEqual(tracker.snapshot()["angry"]["accumulatedMs"], 200.0)
        self.assertFalse(tracker.snapshot()["smirk"]["holding"])

        update = tracker.update(_match("smirk"), now_ms=t)
        self.assertAlmostEqual(update.accumulated_ms, 400.0)

    def test_already_unlocked_upstream(self):
        tracker = _tracker()
        for i in range(40):
            update = tracker.update(_match(), now_ms=i * 100.0, unlocked_ids={"smirk"})
            self.assertIsNone(update.unlock)
        self.assertEqual(update.progress, 1.0)

    def test_reset(self):
        tracker = _tracker()
        for i in range(31):
            tracker.update(_match(), now_ms=i * 100.0)
        tracker.reset()
        self.assertFalse(tracker.is_unlocked("smirk"))
        self.assertEqual(tracker.snapshot(), {})
        events = [tracker.update(_match(), now_ms=i * 100.0).unlock for i in range(31)]
        self.assertEqual(sum(1 for e in events if e), 1)

    def test_no_match_reports_nothing(self):
        update = _tracker().update(None, now_ms=0.0)
        self.assertIsNone(update.expression_id)
        self.assertIsNone(update.unlock)


class TestUnlockState(unittest.TestCase):

    def test_required_unlock_count(self):
        from utils.unlock_state import required_unlock_count
        self.assertEqual(required_unlock_count(True), 2)
        self.assertEqual(required_unlock_count(False), 8)

    def test_apply_unlock_returns_new_state(self):
        from utils.unlock_state import new_game_state, apply_unlock
        state = new_game_state()
        after = apply_unlock(state, "smirk")
        self.assertEqual(state.unlocked, frozenset())
        self.assertEqual(after.unlocked, frozenset({"smirk"}))
        self.assertIs(apply_unlock(after, "smirk"), after)

    def test_is_complete(self):
        from utils.unlock_state import new_game_state, apply_unlock, is_complete
        state = apply_unlock(apply_unlock(new_game_state(), "smirk"), "sad")
        self.assertTrue(is_complete(state, 2))
        self.assertFalse(is_complete(state, 8))

    def test_record_unlock_completion_time(self):
        from utils.unlock_state import new_game_state, start_timer, record_unlock
        state = start_timer(new_game_state(), 1000.0)
        state = record_unlock(state, "smirk", 4000.0, easy_mode=True)
        self.assertFalse(state.completed)
        state = record_unlock(state, "sad", 9000.0, easy_mode=True)
        self.assertTrue(state.completed)
        self.assertEqual(state.completion_time_ms, 8000.0)

        # Later unlocks keep the original completion time
        state = record_unlock(state, "angry", 20000.0, easy_mode=True)
        self.assertEqual(state.completion_time_ms, 8000.0)
        self.assertEqual(len(state.unlocked), 3)

    def test_completion_without_timer_is_zero(self):
        from utils.unlock_state import new_game_state, record_unlock
        state = record_unlock(new_game_state(), "smirk", 500.0, easy_mode=True)
        state = record_unlock(state, "sad", 700.0, easy_mode=True)
        self.assertTrue(state.completed)
        self.assertEqual(state.completion_time_ms, 0)

    def test_normal_mode_needs_eight(self):
        from tests.fixtures.synthetic_landmarks import sample_catalog
        from utils.unlock_state import new_game_state, record_unlock
        state = new_game_state()
        for i, entry in enumerate(sample_catalog()):
            self.assertFalse(state.completed)
            state = record_unlock(state, entry["id"], float(i), easy_mode=False)
        self.assertTrue(state.completed)

    def test_start_timer_keeps_running_clock(self):
        from utils.unlock_state import new_game_state, start_timer
        state = start_timer(new_game_state(), 100.0)
        self.assertEqual(start_timer(state, 900.0).session_start_ms, 100.0)


if __name__ == "__main__":
    unittest.main()
