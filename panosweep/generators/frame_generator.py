"""Frame Generator: parallel extraction of flat frames from one panorama."""

import logging
import os
import threading
import time
import traceback
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from tqdm import tqdm

from ..codecs import FrameSink
from ..core import (
    CameraPose,
    ExtractionConfig,
    PathConfig,
    SourceImage,
    render,
)
from ..core.errors import (
    ErrorKind,
    FrameWriteError,
    InvalidConfigurationError,
    NoFramesExtractedError,
)
from ..core.projection import FrameTask

logger = logging.getLogger(__name__)

PoseFn = Callable[[int, int], CameraPose]
ProgressCallback = Callable[[int, int], None]


class FrameClaims:
    """Hands out each index of [0, frame_count) exactly once.

    The counter is the only state workers mutate together; claims are
    serialized by a lock so no index is duplicated or skipped.
    """

    def __init__(self, frame_count: int):
        self.frame_count = frame_count
        self._next = 0
        self._lock = threading.Lock()

    def claim(self) -> Optional[int]:
        with self._lock:
            if self._next >= self.frame_count:
                return None
            index = self._next
            self._next += 1
            return index

    @property
    def claimed(self) -> int:
        with self._lock:
            return self._next


@dataclass
class FrameFailure:
    """A frame that could not be produced."""
    frame_index: int
    kind: ErrorKind
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"frame_index": self.frame_index, "kind": self.kind.value, "message": self.message}


@dataclass
class ExtractionResult:
    """Summary of one extraction run.

    ``attempted`` counts claimed frames, including ones skipped because their
    output already existed.
    """
    frame_count: int
    attempted: int = 0
    succeeded: int = 0
    skipped: int = 0
    failures: List[FrameFailure] = field(default_factory=list)
    cancelled: bool = False
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.failures and not self.cancelled

    @property
    def failed_indices(self) -> List[int]:
        return [f.frame_index for f in self.failures]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frame_count": self.frame_count,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": len(self.failures),
            "failures": [f.to_dict() for f in self.failures],
            "cancelled": self.cancelled,
            "elapsed": self.elapsed,
        }


@dataclass
class _WorkerReport:
    attempted: int = 0
    succeeded: int = 0
    skipped: int = 0
    failures: List[FrameFailure] = field(default_factory=list)


class FrameGenerator:
    """Extract a sequence of rectilinear frames from one panorama.

    Workers pull frame indices from a shared claim counter, evaluate the
    camera path for that index, project the shared source and hand the pixels
    to the sink. Output files are addressed by frame index, so completion
    order does not matter.
    """

    def __init__(
        self,
        source: SourceImage,
        sink: Union[FrameSink, str, Path],
        config: Optional[ExtractionConfig] = None,
        pose_fn: Optional[PoseFn] = None,
    ):
        """Initialize generator.

        Args:
            source: equirectangular panorama shared by all workers
            sink: FrameSink, or a directory to write frames into using the
                naming settings of ``config``
            config: ExtractionConfig (uses defaults if None)
            pose_fn: ``(index, frame_count) -> CameraPose``; defaults to the
                sweep described by ``config.path``

        Raises:
            InvalidConfigurationError: any configuration value is unusable
        """
        self.config = (config or ExtractionConfig()).validate()
        self.source = source

        if not isinstance(sink, FrameSink):
            sink = FrameSink(
                sink,
                prefix=self.config.prefix,
                image_format=self.config.image_format,
                pad_width=self.config.pad_width,
                jpeg_quality=self.config.jpeg_quality,
            )
        elif len(str(self.config.frame_count - 1)) > sink.pad_width:
            raise InvalidConfigurationError(
                f"pad_width {sink.pad_width} too small for {self.config.frame_count} frames"
            )
        self.sink = sink

        self.pose_fn = pose_fn or self.config.path.pose_for_frame
        self.output_width, self.output_height = self.config.output_size(source.width, source.height)
        self.num_workers = self.config.concurrency or os.cpu_count() or 1

    def generate(
        self,
        skip_existing: bool = False,
        progress: bool = True,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> ExtractionResult:
        """Extract all frames in parallel.

        Args:
            skip_existing: keep frames whose output file already exists
            progress: show a progress bar
            cancel_event: set it to stop claiming new frames; in-flight frames
                still finish. KeyboardInterrupt sets it as well.
            progress_callback: called with (done, total) after every frame;
                exceptions it raises are logged and ignored

        Returns:
            ExtractionResult with failures sorted by frame index

        Raises:
            NoFramesExtractedError: not a single frame was produced
        """
        frame_count = self.config.frame_count
        cancel = cancel_event or threading.Event()
        claims = FrameClaims(frame_count)
        self.sink.remove_stale()

        logger.info(
            "Extracting %d frames (%dx%d) from %r with %d worker(s) into %s",
            frame_count, self.output_width, self.output_height, self.source,
            self.num_workers, self.sink.directory,
        )

        bar = tqdm(total=frame_count, desc="Extracting", disable=not progress)
        progress_lock = threading.Lock()
        done = 0

        def tick():
            # bar.n stays at 0 when the bar is disabled
            nonlocal done
            with progress_lock:
                done += 1
                bar.update(1)
                if progress_callback is not None:
                    try:
                        progress_callback(done, frame_count)
                    except Exception as e:
                        # frames already committed must still be reported
                        logger.warning("Progress callback failed at %d/%d: %s", done, frame_count, e)

        start_time = time.perf_counter()
        try:
            with ThreadPoolExecutor(max_workers=self.num_workers, thread_name_prefix="panosweep") as executor:
                futures = [
                    executor.submit(self._worker, claims, cancel, skip_existing, tick)
                    for _ in range(self.num_workers)
                ]
                try:
                    wait(futures)
                except KeyboardInterrupt:
                    logger.warning("Interrupted; finishing in-flight frames")
                    cancel.set()
                    wait(futures)
                reports = [future.result() for future in futures]
        finally:
            bar.close()

        result = ExtractionResult(frame_count=frame_count, elapsed=time.perf_counter() - start_time)
        for report in reports:
            result.attempted += report.attempted
            result.succeeded += report.succeeded
            result.skipped += report.skipped
            result.failures.extend(report.failures)
        result.failures.sort(key=lambda f: f.frame_index)
        result.cancelled = cancel.is_set() and result.attempted < frame_count

        logger.info(
            "Extraction finished in %.2fs: %d succeeded, %d skipped, %d failed%s",
            result.elapsed, result.succeeded, result.skipped, len(result.failures),
            " (cancelled)" if result.cancelled else "",
        )

        if result.succeeded == 0 and result.skipped == 0:
            raise NoFramesExtractedError(result)
        return result

    def generate_single(self, frame_index: int) -> Path:
        """Re-extract one frame, raising its FrameError instead of recording it."""
        task = self._task(frame_index)
        result = render(self.source, task, self.config.interpolation, self.config.backend)
        return self.sink.store(result.frame_index, result.pixels)

    def _task(self, frame_index: int) -> FrameTask:
        pose = self.pose_fn(frame_index, self.config.frame_count)
        return FrameTask(
            frame_index=frame_index,
            pose=pose,
            output_width=self.output_width,
            output_height=self.output_height,
        )

    def _worker(
        self,
        claims: FrameClaims,
        cancel: threading.Event,
        skip_existing: bool,
        tick: Callable[[], None],
    ) -> _WorkerReport:
        report = _WorkerReport()
        while not cancel.is_set():
            index = claims.claim()
            if index is None:
                break
            report.attempted += 1
            if skip_existing and self.sink.exists(index):
                report.skipped += 1
            else:
                failure = self._extract_frame(index)
                if failure is None:
                    report.succeeded += 1
                else:
                    report.failures.append(failure)
            tick()
        return report

    def _extract_frame(self, frame_index: int) -> Optional[FrameFailure]:
        """Project and store one frame; failures are returned, not raised."""
        try:
            task = self._task(frame_index)
            result = render(self.source, task, self.config.interpolation, self.config.backend)
        except Exception as e:
            logger.warning("Frame %d projection failed: %s", frame_index, e)
            logger.debug(traceback.format_exc())
            return FrameFailure(frame_index, ErrorKind.FRAME_PROJECTION_FAILURE, str(e))

        try:
            self.sink.store(result.frame_index, result.pixels)
        except FrameWriteError as e:
            logger.warning("Frame %d write failed: %s", frame_index, e)
            return FrameFailure(frame_index, ErrorKind.FRAME_WRITE_FAILURE, str(e))
        return None


def extract(
    source: SourceImage,
    frame_count: int,
    output_width: int,
    output_height: int,
    concurrency: Optional[int] = None,
    *,
    sink: Union[FrameSink, str, Path],
    path: Optional[PathConfig] = None,
    pose_fn: Optional[PoseFn] = None,
    interpolation: str = "bilinear",
    backend: str = "numpy",
    skip_existing: bool = False,
    progress: bool = False,
    cancel_event: Optional[threading.Event] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> ExtractionResult:
    """Project ``frame_count`` frames of ``source`` into ``sink``.

    ``concurrency`` defaults to the number of CPUs. See FrameGenerator.generate
    for the remaining options.
    """
    config = ExtractionConfig(
        frame_count=frame_count,
        output_width=output_width,
        output_height=output_height,
        concurrency=concurrency,
        path=path or PathConfig(),
        interpolation=interpolation,
        backend=backend,
    )
    if isinstance(sink, FrameSink):
        config.prefix = sink.prefix
        config.image_format = sink.image_format
        config.pad_width = sink.pad_width
        config.jpeg_quality = sink.jpeg_quality
    gen = FrameGenerator(source, sink, config, pose_fn=pose_fn)
    return gen.generate(
        skip_existing=skip_existing,
        progress=progress,
        cancel_event=cancel_event,
        progress_callback=progress_callback,
    )
