import threading
import unittest

from lantern_net.scheduler import Scheduler


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestScheduler(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.scheduler = Scheduler(max_workers=2, clock=self.clock)

    def tearDown(self) -> None:
        self.scheduler.shutdown()

    def test_capture_and_apply_run_on_owner_thread(self) -> None:
        owner = threading.get_ident()
        seen = {}

        def capture():
            seen["capture"] = threading.get_ident()
            return 20

        def compute(value):
            seen["compute"] = threading.get_ident()
            return value + 1

        def apply(result):
            seen["apply"] = threading.get_ident()
            seen["result"] = result

        self.scheduler.add("double", 5.0, compute, apply, capture=capture)

        self.assertEqual(self.scheduler.tick(), 1)
        self.assertEqual(self.scheduler.drain(timeout=5), 1)
        self.assertEqual(seen["result"], 21)
        self.assertEqual(seen["capture"], owner)
        self.assertEqual(seen["apply"], owner)
        self.assertNotEqual(seen["compute"], owner)

    def test_task_never_overlaps_itself(self) -> None:
        release = threading.Event()
        task = self.scheduler.add("slow", 0.0, lambda _: release.wait(5), lambda result: None)

        self.assertEqual(self.scheduler.tick(), 1)
        self.clock.now += 10
        self.assertEqual(self.scheduler.tick(), 0)
        self.assertTrue(task.in_flight)

        release.set()
        self.assertEqual(self.scheduler.drain(timeout=5), 1)
        self.assertFalse(task.in_flight)
        self.assertEqual(task.runs, 1)

    def test_interval_counts_from_completion(self) -> None:
        task = self.scheduler.add("stats", 1.0, lambda _: None, lambda result: None, initial_delay=2.0)

        self.assertEqual(self.scheduler.tick(), 0)
        self.clock.now += 2.0
        self.assertEqual(self.scheduler.tick(), 1)
        self.clock.now += 7.5
        self.scheduler.drain(timeout=5)

        self.assertEqual(task.next_due, 110.5)
        self.clock.now += 0.5
        self.assertEqual(self.scheduler.tick(), 0)

    def test_compute_failure_is_logged_and_rescheduled(self) -> None:
        def compute(_):
            raise RuntimeError("tool crashed")

        applied = []
        task = self.scheduler.add("flaky", 1.0, compute, applied.append)
        self.scheduler.tick()

        with self.assertLogs("lantern_net.scheduler", level="WARNING") as logs:
            self.scheduler.drain(timeout=5)

        self.assertEqual(applied, [])
        self.assertEqual(task.failures, 1)
        self.assertFalse(task.in_flight)
        self.assertIn("tool crashed", logs.output[0])

    def test_apply_failure_does_not_stop_loop(self) -> None:
        def apply(result):
            raise ValueError("bad result")

        task = self.scheduler.add("broken", 1.0, lambda _: 1, apply)
        self.scheduler.tick()

        with self.assertLogs("lantern_net.scheduler", level="ERROR"):
            self.scheduler.drain(timeout=5)

        self.assertEqual(task.failures, 1)
        self.clock.now += 1.0
        self.assertEqual(self.scheduler.tick(), 1)
        self.scheduler.drain(timeout=5)

    def test_run_until_stops(self) -> None:
        stop = threading.Event()
        count = []

        def apply(result):
            count.append(result)
            stop.set()

        self.scheduler.add("once", 0.0, lambda _: "done", apply)
        self.scheduler.run_until(stop, poll=0.05)

        self.assertEqual(count, ["done"])


if __name__ == "__main__":
    unittest.main()
