import pytest

from app.deferred import DeferredExecutor
from app.notifications import REMOVE_DELAY, NotificationHub


class ManualExecutor(DeferredExecutor):
    """Collects scheduled callbacks so tests can fire them explicitly."""

    def __init__(self):
        self.pending = []

    def schedule(self, fn, *args, delay=0.0):
        handle = {"fn": fn, "args": args, "delay": delay}
        self.pending.append(handle)
        return handle

    def cancel(self, handle):
        if handle in self.pending:
            self.pending.remove(handle)

    def fire(self, delay):
        due = [h for h in self.pending if h["delay"] == delay]
        for handle in due:
            self.pending.remove(handle)
            handle["fn"](*handle["args"])


@pytest.fixture
def executor():
    return ManualExecutor()


@pytest.fixture
def hub(executor):
    return NotificationHub(executor)


class TestNotificationHub:
    def test_newest_first_and_limited(self, hub):
        for i in range(7):
            hub.info(f"n{i}")

        titles = [n.title for n in hub.notifications]
        assert titles == ["n6", "n5", "n4", "n3", "n2"]

    def test_evicted_notifications_lose_their_timers(self, hub, executor):
        for i in range(6):
            hub.info(f"n{i}")

        assert len(executor.pending) == 5

    def test_variant_durations(self, hub, executor):
        hub.error("Failed")
        hub.success("Saved")

        assert sorted(h["delay"] for h in executor.pending) == [5.0, 7.0]

    def test_auto_dismiss_then_remove(self, hub, executor):
        hub.notify("Hello", duration=2.0)

        executor.fire(2.0)
        assert hub.notifications[0].open is False

        executor.fire(REMOVE_DELAY)
        assert hub.notifications == []

    def test_update_resets_timer(self, hub, executor):
        handle = hub.notify("Saving", duration=3.0)

        handle.update(title="Saved", duration=6.0)

        assert hub.notifications[0].title == "Saved"
        assert [h["delay"] for h in executor.pending] == [6.0]

    def test_dismiss_all(self, hub, executor):
        hub.info("a")
        hub.info("b")

        hub.dismiss()

        assert all(not n.open for n in hub.notifications)
        assert [h["delay"] for h in executor.pending] == [REMOVE_DELAY, REMOVE_DELAY]

    def test_remove_all(self, hub, executor):
        hub.info("a")
        hub.info("b")

        hub.remove()

        assert hub.notifications == []
        assert executor.pending == []

    def test_subscribers_receive_state(self, hub):
        received = []
        unsubscribe = hub.subscribe(received.append)

        hub.info("first")
        unsubscribe()
        hub.info("second")

        assert len(received) == 1
        assert received[0][0].title == "first"

    def test_failing_listener_does_not_break_others(self, hub):
        received = []

        def broken(_state):
            raise RuntimeError("listener bug")

        hub.subscribe(broken)
        hub.subscribe(received.append)

        hub.info("still delivered")

        assert len(received) == 1

    def test_hubs_are_independent(self, executor):
        first = NotificationHub(executor)
        second = NotificationHub(executor)

        first.info("only here")

        assert second.notifications == []
