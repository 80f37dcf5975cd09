"""Tests for LatestFrameCache."""

import threading

from camled.camera.frame_cache import LatestFrameCache
from tests.conftest import FakeClock


class TestLatestFrameCache:

    def test_empty_cache_returns_none(self):
        cache = LatestFrameCache()
        assert cache.try_read() is None
        assert cache.is_empty
        assert cache.last_updated is None

    def test_freshness_window_boundary(self):
        clock = FakeClock(100.0)
        cache = LatestFrameCache(freshness_window=2.0, clock=clock)
        cache.publish(b"\xff\xd8\x01\xff\xd9")

        clock.now = 101.9
        frame = cache.try_read()
        assert frame is not None
        assert frame.data == b"\xff\xd8\x01\xff\xd9"

        clock.now = 102.1
        assert cache.try_read() is None

    def test_explicit_window_overrides_default(self):
        clock = FakeClock(0.0)
        cache = LatestFrameCache(freshness_window=2.0, clock=clock)
        cache.publish(b"abc")
        clock.advance(5.0)

        assert cache.try_read() is None
        assert cache.try_read(freshness_window=10.0).data == b"abc"

    def test_publish_replaces_and_sequences(self):
        cache = LatestFrameCache()
        first = cache.publish(b"one")
        second = cache.publish(bytearray(b"two"))

        assert second.sequence == first.sequence + 1
        assert isinstance(second.data, bytes)
        assert cache.try_read().data == b"two"

    def test_clear(self):
        cache = LatestFrameCache()
        cache.publish(b"frame")

        cache.clear()

        assert cache.try_read() is None
        assert cache.is_empty

    def test_stats_count_stale_reads(self):
        clock = FakeClock(0.0)
        cache = LatestFrameCache(freshness_window=1.0, clock=clock)
        cache.publish(b"x" * 10)
        cache.try_read()
        clock.advance(2.0)
        cache.try_read()

        stats = cache.get_stats()
        assert stats["frames_published"] == 1
        assert stats["reads_served"] == 1
        assert stats["stale_reads"] == 1
        assert stats["frame_bytes"] == 10

    def test_concurrent_readers_never_see_torn_frames(self):
        cache = LatestFrameCache(freshness_window=60.0)
        stop = threading.Event()
        errors = []

        def writer():
            i = 0
            while not stop.is_set():
                cache.publish(bytes([i % 256]) * 4096)
                i += 1

        def reader():
            for _ in range(5000):
                frame = cache.try_read()
                if frame is None:
                    continue
                if len(frame.data) != 4096 or len(set(frame.data)) != 1:
                    errors.append(frame.sequence)

        writer_thread = threading.Thread(target=writer)
        readers = [threading.Thread(target=reader) for _ in range(4)]
        writer_thread.start()
        for thread in readers:
            thread.start()
        for thread in readers:
            thread.join()
        stop.set()
        writer_thread.join()

        assert errors == []
