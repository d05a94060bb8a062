from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set

import httpx

from . import discovery
from .aggregate import aggregate
from .classifier import ClassificationError, MatroidClient
from .jobs import JobStateError, JobStore
from .logging import bind_job_context, reset_job_context
from .notify import WebhookRegistry, format_report, publish
from .schemas import Program, SegmentResult
from .segment import SplitError, probe_duration_sec, split_video
from .settings import Settings
from .storage import ResultArchive, build_archive, processed_results_key, raw_results_key
from .video import DownloadError, download_program

logger = logging.getLogger(__name__)


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


class JobRunner:
    """Drives registered programs through download, split, classify and report.

    Two uncoordinated loops run on fixed cadences: discovery registers new
    programs and dispatch picks up Unprocessed jobs. A job that is
    Processing is invisible to dispatch, which is what keeps a single runner
    from picking it up twice.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: Optional[JobStore] = None,
        classifier: Optional[MatroidClient] = None,
        registry: Optional[WebhookRegistry] = None,
        archive: Optional[ResultArchive] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.store = store or JobStore(settings.programs_dir, settings.videos_dir)
        self.classifier = classifier or MatroidClient.from_settings(settings, transport=transport)
        self.registry = registry or WebhookRegistry(settings.webhooks_file)
        self.archive = archive or build_archive(settings)
        self.transport = transport
        self.sema = asyncio.Semaphore(settings.segment_concurrency)
        self._stop = asyncio.Event()
        self._loops: List[asyncio.Task] = []
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------ lifecycle

    def is_running(self) -> bool:
        return any(not task.done() for task in self._loops)

    def start(self) -> None:
        if self.is_running():
            logger.info("runner_start_noop", extra={"reason": "already_running"})
            return
        self._stop.clear()
        self._loops = [
            asyncio.create_task(
                self._periodic("discovery", self.settings.discovery_interval_sec, self.discover),
                name="newswatch-discovery",
            ),
            asyncio.create_task(
                self._periodic("dispatch", self.settings.dispatch_interval_sec, self.dispatch),
                name="newswatch-dispatch",
            ),
        ]
        logger.info("runner_started")

    async def stop(self) -> None:
        self._stop.set()
        pending = [*self._loops, *self._tasks]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._loops = []
        logger.info("runner_stopped")

    async def drain(self) -> None:
        """Wait until every job and scheduled revert started so far has finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Awaitable[None], name: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _periodic(
        self,
        name: str,
        interval: float,
        tick: Callable[[], Awaitable[object]],
    ) -> None:
        logger.info("loop_started", extra={"loop": name, "interval": interval})
        try:
            while not self._stop.is_set():
                try:
                    await tick()
                except Exception:
                    logger.exception("loop_tick_error", extra={"loop": name})
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    continue
        finally:
            logger.info("loop_exit", extra={"loop": name})

    # ------------------------------------------------------------ ticks

    async def discover(self, now: Optional[datetime] = None) -> List[str]:
        return await discovery.discover(
            self.store, self.settings, now=now, transport=self.transport
        )

    async def dispatch(self) -> List[str]:
        """Claim every Unprocessed job and start processing it in the background."""

        started: List[str] = []
        for job_id in self.store.list_unprocessed():
            try:
                self.store.mark_processing(job_id)
            except JobStateError:
                logger.info("job_claim_skipped", extra={"job_id": job_id})
                continue
            self._spawn(self._run_job(job_id), name=f"job-{job_id}")
            started.append(job_id)
        if started:
            logger.info("dispatch_tick", extra={"started": len(started)})
        return started

    async def process(self, job_id: str) -> None:
        """Claim and run a single job to completion in the calling task."""

        self.store.mark_processing(job_id)
        await self._run_job(job_id)

    # ------------------------------------------------------------ pipeline

    async def _run_job(self, job_id: str) -> None:
        token = bind_job_context(job_id)
        try:
            program = self.store.load(job_id)
            logger.info("job_processing", extra={"job_id": job_id})
            await self._pipeline(program)
        except asyncio.CancelledError:
            logger.warning("job_cancelled", extra={"job_id": job_id})
            raise
        except Exception:
            logger.exception("job_crashed", extra={"job_id": job_id})
        finally:
            reset_job_context(token)

    async def _pipeline(self, program: Program) -> None:
        job_id = program.id
        video_path = str(self.store.video_path(job_id))
        manifest_path = str(self.store.manifest_path(job_id))

        try:
            await download_program(program, video_path, self.settings, transport=self.transport)
        except DownloadError as exc:
            self._download_failed(program, exc)
            return

        try:
            segments = await split_video(
                video_path,
                manifest_path,
                self.settings.segment_time_sec,
                self.settings.ffmpeg_path,
            )
            durations = [
                await probe_duration_sec(path, self.settings.ffprobe_path) for path in segments
            ]
        except SplitError:
            # Left in Processing until an operator resets it.
            logger.exception("job_split_failed", extra={"job_id": job_id})
            return
        logger.info("job_split", extra={"job_id": job_id, "segments": len(segments)})

        try:
            results = await self._classify_segments(segments, durations)
        except ClassificationError as exc:
            logger.error(
                "job_classification_failed",
                extra={"job_id": job_id, "error": str(exc)},
            )
            for path in [*segments, video_path, manifest_path]:
                _discard(path)
            self.store.mark_failed(job_id)
            return

        self._archive(raw_results_key(job_id), [result.model_dump() for result in results])
        intervals = aggregate(
            results,
            self.settings.confidence_threshold,
            self.settings.gap_tolerance_sec,
        )
        self._archive(
            processed_results_key(job_id),
            {
                "job_id": job_id,
                "labels": {label: [list(run) for run in runs] for label, runs in intervals.items()},
            },
        )

        report = format_report(program, intervals, self.settings.archive_details_base)
        delivered = await publish(
            report,
            self.registry.load(),
            self.settings.webhook_hmac_secret,
            transport=self.transport,
        )
        self.store.mark_processed(job_id)
        _discard(video_path)
        _discard(manifest_path)
        logger.info(
            "job_processed",
            extra={"job_id": job_id, "labels": len(intervals), "delivered": delivered},
        )

    def _download_failed(self, program: Program, exc: DownloadError) -> None:
        program.download_attempts += 1
        self.store.update(program)
        ceiling = self.settings.download_max_attempts
        if ceiling and program.download_attempts >= ceiling:
            logger.error(
                "job_download_abandoned",
                extra={"job_id": program.id, "attempts": program.download_attempts, "error": str(exc)},
            )
            self.store.mark_failed(program.id)
            return
        delay = self.settings.download_retry_delay_sec
        logger.warning(
            "job_download_failed",
            extra={
                "job_id": program.id,
                "attempts": program.download_attempts,
                "retry_in": delay,
                "error": str(exc),
            },
        )
        self._spawn(self._revert_later(program.id, delay), name=f"revert-{program.id}")

    async def _revert_later(self, job_id: str, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        finally:
            # runs on cancellation too
            try:
                self.store.revert_to_unprocessed(job_id)
            except JobStateError:
                logger.warning("job_revert_skipped", extra={"job_id": job_id})

    async def _classify_one(self, index: int, path: str, duration: float) -> SegmentResult:
        async with self.sema:
            results = await self.classifier.classify(path)
        _discard(path)
        return SegmentResult(index=index, duration=duration, results=results)

    async def _classify_segments(
        self,
        segments: Sequence[str],
        durations: Sequence[float],
    ) -> List[SegmentResult]:
        """Fan every segment out to the classifier and collect results by index."""

        slots: List[Optional[SegmentResult]] = [None] * len(segments)
        remaining = len(segments)
        tasks = [
            asyncio.ensure_future(self._classify_one(index, path, durations[index]))
            for index, path in enumerate(segments)
        ]
        try:
            for next_done in asyncio.as_completed(tasks):
                result = await next_done
                slots[result.index] = result
                remaining -= 1
                logger.info(
                    "segment_classified",
                    extra={"index": result.index, "remaining": remaining},
                )
        except BaseException:
            for task in tasks:
                task.cancel()
            with contextlib.suppress(Exception):
                await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return [slot for slot in slots if slot is not None]

    def _archive(self, key: str, payload: object) -> None:
        try:
            location = self.archive.put_json(key, payload)
        except Exception:
            logger.exception("result_archive_failed", extra={"key": key})
            return
        logger.info("result_archived", extra={"key": key, "location": location})

    def summary(self) -> Dict[str, List[str]]:
        return self.store.list_states()
