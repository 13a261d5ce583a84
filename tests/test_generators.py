"""Tests for the parallel frame generator."""

import math
import tempfile
import threading
from pathlib import Path

import pytest
import numpy as np
from PIL import Image

from panosweep import FrameGenerator, FrameSink, extract
from panosweep.core import (
    CameraPose,
    ErrorKind,
    ExtractionConfig,
    FrameProjectionError,
    FrameWriteError,
    InvalidConfigurationError,
    NoFramesExtractedError,
    PathConfig,
    SourceImage,
)
from panosweep.generators import FrameClaims


def smooth_panorama(height: int) -> np.ndarray:
    width = 2 * height
    lon = (np.arange(width) + 0.5) / width * 2 * np.pi - np.pi
    lat = np.pi / 2 - (np.arange(height) + 0.5) / height * np.pi
    lon_g, lat_g = np.meshgrid(lon, lat)
    planes = [127.5 + 100 * np.cos(lon_g), 127.5 + 100 * np.sin(lon_g), 127.5 + 100 * np.sin(lat_g)]
    return np.stack(planes, axis=-1).round().astype(np.uint8)


def degenerate_at(bad, path=None):
    """Pose function producing the regular sweep except for the indices in ``bad``."""
    path = path or PathConfig()

    def pose_fn(index, frame_count):
        if index in bad:
            return CameraPose(0.0, 0.0, 0.0)
        return path.pose_for_frame(index, frame_count)

    return pose_fn


class FailingSink(FrameSink):
    def __init__(self, directory, fail_on):
        super().__init__(directory)
        self.fail_on = set(fail_on)

    def store(self, frame_index, pixels):
        if frame_index in self.fail_on:
            raise FrameWriteError(f"refusing frame {frame_index}")
        return super().store(frame_index, pixels)


class TestFrameClaims:
    def test_sequential(self):
        claims = FrameClaims(3)
        assert [claims.claim() for _ in range(5)] == [0, 1, 2, None, None]
        assert claims.claimed == 3

    def test_threads_never_share_an_index(self):
        claims = FrameClaims(2000)
        taken = [[] for _ in range(8)]

        def drain(bucket):
            while True:
                index = claims.claim()
                if index is None:
                    return
                bucket.append(index)

        threads = [threading.Thread(target=drain, args=(bucket,)) for bucket in taken]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        merged = sorted(i for bucket in taken for i in bucket)
        assert merged == list(range(2000))


class TestFrameGenerator:
    @pytest.fixture
    def source(self):
        return SourceImage.from_array(smooth_panorama(50))

    def test_extract_all_frames(self, source):
        with tempfile.TemporaryDirectory() as tmpdir:
            result = extract(source, 12, 16, 12, concurrency=4, sink=tmpdir)

            assert result.ok
            assert (result.attempted, result.succeeded, result.skipped) == (12, 12, 0)
            sink = FrameSink(tmpdir)
            assert [p.name for p in sink.frames()] == [sink.name_for(i) for i in range(12)]
            assert Image.open(sink.path_for(0)).size == (16, 12)

    def test_worker_count(self, source):
        gen = FrameGenerator(source, "/tmp/unused", ExtractionConfig(frame_count=4, concurrency=3))
        assert gen.num_workers == 3

    def test_output_size_derived_from_fov(self):
        source = SourceImage.from_array(smooth_panorama(100))
        gen = FrameGenerator(source, "/tmp/unused", ExtractionConfig(frame_count=4))
        # 60 of 360 degrees across 200 columns, 45 of 180 degrees across 100 rows
        assert (gen.output_width, gen.output_height) == (33, 25)

    def test_output_independent_of_concurrency(self, source):
        with tempfile.TemporaryDirectory() as tmpdir:
            serial = Path(tmpdir) / "serial"
            parallel = Path(tmpdir) / "parallel"
            extract(source, 20, 24, 16, concurrency=1, sink=serial)
            extract(source, 20, 24, 16, concurrency=8, sink=parallel)

            for frame in FrameSink(serial).frames():
                assert frame.read_bytes() == (parallel / frame.name).read_bytes()

    def test_rerun_is_idempotent(self, source):
        with tempfile.TemporaryDirectory() as tmpdir:
            extract(source, 6, 16, 12, concurrency=2, sink=tmpdir)
            first = {p.name: p.read_bytes() for p in FrameSink(tmpdir).frames()}
            extract(source, 6, 16, 12, concurrency=3, sink=tmpdir)
            second = {p.name: p.read_bytes() for p in FrameSink(tmpdir).frames()}
            assert first == second

    def test_every_index_evaluated_once(self, source):
        seen = []
        lock = threading.Lock()
        path = PathConfig()

        def pose_fn(index, frame_count):
            with lock:
                seen.append(index)
            return path.pose_for_frame(index, frame_count)

        with tempfile.TemporaryDirectory() as tmpdir:
            extract(source, 30, 8, 6, concurrency=5, sink=tmpdir, pose_fn=pose_fn)
        assert sorted(seen) == list(range(30))

    def test_projection_failure_is_isolated(self, source):
        with tempfile.TemporaryDirectory() as tmpdir:
            result = extract(source, 10, 16, 12, concurrency=4, sink=tmpdir, pose_fn=degenerate_at({3, 7}))

            assert not result.ok
            assert result.succeeded == 8
            assert result.failed_indices == [3, 7]
            assert all(f.kind is ErrorKind.FRAME_PROJECTION_FAILURE for f in result.failures)
            sink = FrameSink(tmpdir)
            assert not sink.exists(3)
            assert not sink.exists(7)
            assert len(sink.frames()) == 8

    def test_write_failure_is_isolated(self, source):
        with tempfile.TemporaryDirectory() as tmpdir:
            sink = FailingSink(tmpdir, fail_on={0, 5})
            result = extract(source, 6, 16, 12, concurrency=3, sink=sink)

            assert result.succeeded == 4
            assert result.failed_indices == [0, 5]
            assert result.failures[0].kind is ErrorKind.FRAME_WRITE_FAILURE
            assert "refusing frame 0" in result.failures[0].message

    def test_all_frames_failing_is_fatal(self, source):
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(NoFramesExtractedError) as exc:
                extract(source, 4, 16, 12, concurrency=2, sink=tmpdir, pose_fn=degenerate_at(set(range(4))))
            assert exc.value.result.failed_indices == [0, 1, 2, 3]

    @pytest.mark.parametrize("kwargs", [
        {"frame_count": 0},
        {"concurrency": 0},
        {"output_width": 0},
    ])
    def test_invalid_config_writes_nothing(self, source, kwargs):
        args = {"frame_count": 4, "output_width": 16, "output_height": 12, "concurrency": 2}
        args.update(kwargs)
        with tempfile.TemporaryDirectory() as tmpdir:
            out = Path(tmpdir) / "frames"
            with pytest.raises(InvalidConfigurationError):
                extract(source, sink=out, **args)
            assert not out.exists()

    def test_sink_padding_too_small(self, source):
        sink = FrameSink("/tmp/unused", pad_width=1)
        with pytest.raises(InvalidConfigurationError):
            FrameGenerator(source, sink, ExtractionConfig(frame_count=11))

    def test_cancel_stops_claiming(self, source):
        cancel = threading.Event()

        def on_progress(done, total):
            if done == 3:
                cancel.set()

        with tempfile.TemporaryDirectory() as tmpdir:
            result = extract(source, 10, 16, 12, concurrency=1, sink=tmpdir,
                             cancel_event=cancel, progress_callback=on_progress)

            assert result.cancelled
            assert not result.ok
            assert (result.attempted, result.succeeded) == (3, 3)
            assert len(FrameSink(tmpdir).frames()) == 3

    def test_keyboard_interrupt_finishes_in_flight_frame(self, source, monkeypatch):
        import panosweep.generators.frame_generator as frame_generator

        started = threading.Event()
        released = threading.Event()
        real_wait = frame_generator.wait
        calls = []
        path = PathConfig()

        def pose_fn(index, frame_count):
            started.set()
            released.wait(timeout=10)
            return path.pose_for_frame(index, frame_count)

        def interrupted_wait(futures):
            calls.append(len(calls))
            if len(calls) == 1:
                started.wait(timeout=10)
                raise KeyboardInterrupt
            released.set()
            return real_wait(futures)

        monkeypatch.setattr(frame_generator, "wait", interrupted_wait)
        with tempfile.TemporaryDirectory() as tmpdir:
            result = extract(source, 10, 16, 12, concurrency=1, sink=tmpdir, pose_fn=pose_fn)

            assert result.cancelled
            assert (result.attempted, result.succeeded) == (1, 1)
            assert FrameSink(tmpdir).exists(0)
            assert len(FrameSink(tmpdir).frames()) == 1

    def test_raising_progress_callback_does_not_abort(self, source):
        def on_progress(done, total):
            if done == 2:
                raise RuntimeError("boom")

        with tempfile.TemporaryDirectory() as tmpdir:
            result = extract(source, 6, 16, 12, concurrency=2, sink=tmpdir, progress_callback=on_progress)

            assert result.ok
            assert result.succeeded == 6
            assert len(FrameSink(tmpdir).frames()) == 6

    def test_cancel_before_start(self, source):
        cancel = threading.Event()
        cancel.set()
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(NoFramesExtractedError) as exc:
                extract(source, 5, 16, 12, concurrency=2, sink=tmpdir, cancel_event=cancel)
            assert exc.value.result.cancelled
            assert exc.value.result.attempted == 0

    def test_progress_callback(self, source):
        calls = []
        with tempfile.TemporaryDirectory() as tmpdir:
            extract(source, 8, 8, 6, concurrency=4, sink=tmpdir,
                    progress_callback=lambda done, total: calls.append((done, total)))
        assert calls == [(i, 8) for i in range(1, 9)]

    def test_skip_existing(self, source):
        with tempfile.TemporaryDirectory() as tmpdir:
            extract(source, 5, 16, 12, concurrency=2, sink=tmpdir)
            sink = FrameSink(tmpdir)
            sink.path_for(2).write_bytes(b"kept")
            sink.path_for(4).unlink()

            result = extract(source, 5, 16, 12, concurrency=2, sink=tmpdir, skip_existing=True)

            assert (result.attempted, result.skipped, result.succeeded) == (5, 4, 1)
            assert result.ok
            assert sink.path_for(2).read_bytes() == b"kept"
            assert sink.exists(4)

    def test_stale_partials_removed(self, source):
        with tempfile.TemporaryDirectory() as tmpdir:
            stale = Path(tmpdir) / ".frame_00000000.png.x1y2.partial"
            stale.write_bytes(b"half")
            extract(source, 2, 8, 6, concurrency=1, sink=tmpdir)
            assert not stale.exists()

    def test_looking_straight_up(self, source):
        with tempfile.TemporaryDirectory() as tmpdir:
            result = extract(source, 4, 16, 12, concurrency=2, sink=tmpdir,
                             path=PathConfig(pitch=math.pi / 2, h_fov=math.pi / 2))
            assert result.succeeded == 4

    def test_generate_single(self, source):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg = ExtractionConfig(frame_count=5, output_width=16, output_height=12)
            gen = FrameGenerator(source, tmpdir, cfg, pose_fn=degenerate_at({1}))
            assert gen.generate_single(2) == gen.sink.path_for(2)
            with pytest.raises(FrameProjectionError):
                gen.generate_single(1)

    def test_result_summary(self, source):
        with tempfile.TemporaryDirectory() as tmpdir:
            result = extract(source, 4, 8, 6, concurrency=2, sink=tmpdir, pose_fn=degenerate_at({1}))
        summary = result.to_dict()
        assert summary["succeeded"] == 3
        assert summary["failed"] == 1
        assert summary["failures"][0]["kind"] == "FrameProjectionFailure"
        assert summary["failures"][0]["frame_index"] == 1


class TestEndToEnd:
    def test_full_sweep(self):
        pixels = smooth_panorama(2000)
        source = SourceImage.from_array(pixels)

        with tempfile.TemporaryDirectory() as tmpdir:
            result = extract(source, 10, 800, 450, concurrency=4, sink=tmpdir)
            assert result.ok
            assert result.succeeded == 10

            sink = FrameSink(tmpdir)
            for i in range(10):
                frame = np.array(Image.open(sink.path_for(i)))
                assert frame.shape == (450, 800, 3)
                # yaw steps by 36 degrees from -180, a tenth of the source width per frame
                expected = pixels[1000, (400 * i) % 4000].astype(int)
                assert np.abs(frame[225, 400].astype(int) - expected).max() <= 2

    def test_quarter_turn(self):
        pixels = smooth_panorama(2000)
        source = SourceImage.from_array(pixels)
        # frame 9 of 10 lands exactly on a quarter turn
        path = PathConfig(start_yaw=0.0, angular_velocity=(math.pi / 2) * 10 / 9, h_fov=math.pi / 3)

        with tempfile.TemporaryDirectory() as tmpdir:
            result = extract(source, 10, 800, 450, concurrency=8, sink=tmpdir, path=path)
            assert result.succeeded == 10

            sink = FrameSink(tmpdir)
            first = np.array(Image.open(sink.path_for(0)))
            last = np.array(Image.open(sink.path_for(9)))
            assert np.array_equal(first[225, 400], pixels[1000, 2000])
            assert np.abs(last[225, 400].astype(int) - pixels[1000, 3000].astype(int)).max() <= 2
