"""Tests for the replaying snapshot stream."""

import threading

from cine_admin.cache.stream import SnapshotStream


class TestSnapshotStream:
    """Tests for SnapshotStream."""

    def test_new_subscriber_receives_current_value(self, recorder):
        stream = SnapshotStream([1, 2])
        stream.subscribe(recorder)
        assert recorder.values == [[1, 2]]

    def test_every_publish_reaches_every_subscriber_in_order(self, recorder):
        stream = SnapshotStream([])
        other = []
        stream.subscribe(recorder)
        stream.subscribe(other.append)

        stream.publish([1])
        stream.publish([1, 2])

        assert recorder.values == [[], [1], [1, 2]]
        assert other == [[], [1], [1, 2]]

    def test_late_subscriber_gets_latest_only(self, recorder):
        stream = SnapshotStream([])
        stream.publish(["a"])
        stream.publish(["a", "b"])
        stream.subscribe(recorder)
        assert recorder.values == [["a", "b"]]

    def test_copier_isolates_subscribers(self):
        stream = SnapshotStream([1], copier=list)
        received = []
        stream.subscribe(received.append)
        received[0].append(99)
        assert stream.value == [1]

    def test_unsubscribe_stops_delivery(self, recorder):
        stream = SnapshotStream(0)
        subscription = stream.subscribe(recorder)
        subscription.unsubscribe()
        subscription.unsubscribe()
        stream.publish(1)
        assert recorder.values == [0]
        assert stream.subscriber_count == 0

    def test_close_completes_subscribers_and_ignores_publish(self, recorder):
        stream = SnapshotStream(0)
        stream.subscribe(recorder, on_complete=recorder.complete)

        stream.close()
        stream.close()
        stream.publish(5)

        assert recorder.completed == 1
        assert recorder.values == [0]
        assert stream.closed

    def test_subscribe_after_close_only_completes(self, recorder):
        stream = SnapshotStream(0)
        stream.close()
        subscription = stream.subscribe(recorder, on_complete=recorder.complete)
        assert recorder.values == []
        assert recorder.completed == 1
        assert not subscription.active

    def test_failing_subscriber_does_not_block_others(self, recorder, caplog):
        stream = SnapshotStream(0, name="rooms")

        def explode(value):
            raise RuntimeError("render failed")

        stream.subscribe(explode)
        stream.subscribe(recorder)
        stream.publish(1)

        assert recorder.values == [0, 1]
        assert "Subscriber of rooms failed" in caplog.text

    def test_shared_lock_is_used(self):
        lock = threading.RLock()
        stream = SnapshotStream(0, lock=lock)
        seen = []

        def try_acquire():
            acquired = lock.acquire(blocking=False)
            if acquired:
                lock.release()
            seen.append(acquired)

        def check(value):
            # Delivery happens while the owner's lock is held
            contender = threading.Thread(target=try_acquire)
            contender.start()
            contender.join()

        stream.subscribe(check)
        stream.publish(1)
        assert seen == [False, False]
