"""Tests for the MJPEG demultiplexer and the async frame iterators."""

import asyncio
import os
import threading

import pytest

from camled.camera.demux import (
    MjpegDemuxer,
    iter_file_frames,
    iter_frames,
    open_stream,
    verify_jpeg,
)
from camled.camera.errors import FrameDecodeError, StreamOpenError
from camled.camera.invocation import unblock_fifo
from tests.conftest import make_frame, make_jpeg


def _reader(*chunks: bytes, eof: bool = True) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    for chunk in chunks:
        reader.feed_data(chunk)
    if eof:
        reader.feed_eof()
    return reader


class TestMjpegDemuxer:

    def test_two_frames_in_one_chunk(self):
        demuxer = MjpegDemuxer()

        frames = demuxer.feed(bytes.fromhex("FFD80102FFD9FFD803FFD9"))

        assert frames == [bytes.fromhex("FFD80102FFD9"), bytes.fromhex("FFD803FFD9")]
        assert demuxer.frames_emitted == 2
        assert not demuxer.in_frame

    def test_garbage_before_first_marker_is_discarded(self):
        demuxer = MjpegDemuxer()

        frames = demuxer.feed(b"\x00\x11garbage" + make_frame(b"\x01"))

        assert frames == [make_frame(b"\x01")]
        assert demuxer.bytes_discarded == 9

    @pytest.mark.parametrize("chunk_size", [1, 2, 3, 5, 7])
    def test_frames_split_at_any_boundary(self, chunk_size):
        payloads = [bytes([i]) * (i + 3) for i in range(1, 6)]
        stream = b"".join(make_frame(p) for p in payloads)
        demuxer = MjpegDemuxer()

        frames = []
        for offset in range(0, len(stream), chunk_size):
            frames.extend(demuxer.feed(stream[offset:offset + chunk_size]))

        assert frames == [make_frame(p) for p in payloads]

    def test_start_marker_split_after_junk(self):
        demuxer = MjpegDemuxer()

        assert demuxer.feed(b"\x00\x00\xff") == []
        assert demuxer.buffered == 1
        assert demuxer.feed(b"\xd8\x05\xff") == []
        assert demuxer.feed(b"\xd9") == [make_frame(b"\x05")]

    def test_unterminated_frame_dropped_with_bounded_memory(self):
        demuxer = MjpegDemuxer(max_frame_bytes=16)

        for _ in range(10):
            assert demuxer.feed(b"\xff\xd8" + b"\x00" * 30) == []
            assert demuxer.buffered <= 16

        assert demuxer.frames_dropped >= 1
        assert demuxer.feed(make_frame(b"\x07")) == [make_frame(b"\x07")]

    def test_oversized_frame_yields_nothing_then_resyncs(self):
        demuxer = MjpegDemuxer(max_frame_bytes=16)

        frames = demuxer.feed(make_frame(b"\x00" * 40) + make_frame(b"\x09"))

        assert frames == [make_frame(b"\x09")]
        assert demuxer.frames_dropped == 1

    def test_resyncs_on_soi_inside_abandoned_frame(self):
        demuxer = MjpegDemuxer(max_frame_bytes=16)

        # Truncated frame (no EOI) immediately followed by a complete one.
        frames = demuxer.feed(b"\xff\xd8" + b"\x00" * 20 + make_frame(b"\x04"))

        assert frames == [make_frame(b"\x04")]

    def test_reset_clears_partial_frame(self):
        demuxer = MjpegDemuxer()
        demuxer.feed(b"\xff\xd8\x01\x02")
        assert demuxer.in_frame

        demuxer.reset()

        assert not demuxer.in_frame
        assert demuxer.buffered == 0
        assert demuxer.feed(b"\x03\xff\xd9") == []

    def test_rejects_tiny_bound(self):
        with pytest.raises(ValueError):
            MjpegDemuxer(max_frame_bytes=3)


class TestVerifyJpeg:

    def test_accepts_real_jpeg(self):
        verify_jpeg(make_jpeg())

    def test_rejects_marker_only_frame(self):
        with pytest.raises(FrameDecodeError):
            verify_jpeg(make_frame(b"\x01\x02"))


class TestIterFrames:

    @pytest.mark.asyncio
    async def test_yields_frames_until_eof(self):
        reader = _reader(b"\xff\xd8\x01", b"\x02\xff", b"\xd9\xff\xd8\x03\xff\xd9")

        frames = [frame async for frame in iter_frames(reader, chunk_size=4)]

        assert frames == [make_frame(b"\x01\x02"), make_frame(b"\x03")]

    @pytest.mark.asyncio
    async def test_validator_skips_bad_frames(self):
        good = make_jpeg()
        reader = _reader(make_frame(b"\x01") + good)

        frames = [frame async for frame in iter_frames(reader, validator=verify_jpeg)]

        assert frames == [good]

    @pytest.mark.asyncio
    async def test_cancel_ends_blocked_read(self):
        reader = _reader(make_frame(b"\x01"), eof=False)
        cancel = asyncio.Event()
        received = []

        async def consume():
            async for frame in iter_frames(reader, cancel=cancel):
                received.append(frame)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.05)
        cancel.set()
        await asyncio.wait_for(task, timeout=2.0)

        assert received == [make_frame(b"\x01")]

    @pytest.mark.asyncio
    async def test_file_source(self, tmp_path):
        path = tmp_path / "stream.mjpeg"
        path.write_bytes(b"junk" + make_frame(b"\x01") + make_frame(b"\x02"))

        frames = [frame async for frame in iter_file_frames(path, open_timeout=1.0)]

        assert frames == [make_frame(b"\x01"), make_frame(b"\x02")]

    @pytest.mark.asyncio
    async def test_missing_file_reports_stream_open_error(self, tmp_path):
        with pytest.raises(StreamOpenError):
            await open_stream(tmp_path / "missing.mjpeg", timeout=1.0)

    @pytest.mark.asyncio
    async def test_fifo_delivers_small_frame_while_writer_stays_open(self, tmp_path):
        fifo = tmp_path / "pipe.mjpeg"
        os.mkfifo(fifo)
        release = threading.Event()

        def writer():
            with open(fifo, "wb") as fh:
                fh.write(make_frame(b"\x01\x02"))
                fh.flush()
                release.wait(5.0)

        writer_task = asyncio.create_task(asyncio.to_thread(writer))
        frames = iter_file_frames(fifo, open_timeout=2.0)
        try:
            first = await asyncio.wait_for(frames.__anext__(), timeout=2.0)
        finally:
            release.set()
            await frames.aclose()
            await writer_task

        assert first == make_frame(b"\x01\x02")

    @pytest.mark.asyncio
    async def test_fifo_without_writer_times_out(self, tmp_path):
        fifo = tmp_path / "pipe.mjpeg"
        os.mkfifo(fifo)

        with pytest.raises(StreamOpenError):
            async for _ in iter_file_frames(fifo, open_timeout=0.2):
                pass

        # Release the worker thread still blocked in open().
        await asyncio.to_thread(unblock_fifo, fifo)
