"""Filesystem-backed job store.

A job's state is inferred from which marker file exists for its id in the
programs directory. Every transition is a single ``os.rename`` so at most one
marker exists for an id at any time.
"""

from __future__ import annotations

import enum
import logging
import os
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .schemas import Program

logger = logging.getLogger(__name__)

MARKER_SUFFIX = ".json"


class JobStateError(RuntimeError):
    """Raised when a transition is not valid for the job's current state."""


class JobState(str, enum.Enum):
    UNPROCESSED = "unprocessed"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


_PREFIXES: Dict[JobState, str] = {
    JobState.UNPROCESSED: "_",
    JobState.PROCESSING: "~",
    JobState.FAILED: "!",
    JobState.PROCESSED: "",
}


class JobStore:
    def __init__(self, programs_dir: Path | str, videos_dir: Path | str) -> None:
        self.programs_dir = Path(programs_dir)
        self.videos_dir = Path(videos_dir)
        self.programs_dir.mkdir(parents=True, exist_ok=True)
        self.videos_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------ paths

    def marker_path(self, job_id: str, state: JobState) -> Path:
        return self.programs_dir / f"{_PREFIXES[state]}{job_id}{MARKER_SUFFIX}"

    def video_path(self, job_id: str) -> Path:
        return self.videos_dir / f"{job_id}.mp4"

    def manifest_path(self, job_id: str) -> Path:
        return self.videos_dir / f"{job_id}_ffmpeg.out"

    # ------------------------------------------------------------------ queries

    def state_of(self, job_id: str) -> Optional[JobState]:
        """Return the job's state, or ``None`` when it was never registered."""

        for state in JobState:
            if self.marker_path(job_id, state).exists():
                return state
        return None

    def is_registered(self, job_id: str) -> bool:
        return self.state_of(job_id) is not None

    def load(self, job_id: str) -> Program:
        state = self.state_of(job_id)
        if state is None:
            raise JobStateError(f"job {job_id} is not registered")
        text = self.marker_path(job_id, state).read_text(encoding="utf-8")
        return Program.model_validate_json(text)

    def list_unprocessed(self) -> Iterator[str]:
        """Yield the ids of jobs that are currently Unprocessed.

        The directory is re-read on every call, so a fresh call restarts the
        sweep against the current state.
        """

        prefix = _PREFIXES[JobState.UNPROCESSED]
        for entry in sorted(os.listdir(self.programs_dir)):
            if entry.startswith(prefix) and entry.endswith(MARKER_SUFFIX):
                yield entry[len(prefix) : -len(MARKER_SUFFIX)]

    def list_states(self) -> Dict[str, List[str]]:
        states: Dict[str, List[str]] = {state.value: [] for state in JobState}
        for entry in sorted(os.listdir(self.programs_dir)):
            if not entry.endswith(MARKER_SUFFIX):
                continue
            stem = entry[: -len(MARKER_SUFFIX)]
            if stem[:1] == "_":
                states[JobState.UNPROCESSED.value].append(stem[1:])
            elif stem[:1] == "~":
                states[JobState.PROCESSING.value].append(stem[1:])
            elif stem[:1] == "!":
                states[JobState.FAILED.value].append(stem[1:])
            else:
                states[JobState.PROCESSED.value].append(stem)
        return states

    # ------------------------------------------------------------------ writes

    def register(self, program: Program) -> bool:
        """Persist an Unprocessed marker unless the id is already known."""

        if self.is_registered(program.id):
            return False
        path = self.marker_path(program.id, JobState.UNPROCESSED)
        try:
            with path.open("x", encoding="utf-8") as fh:
                fh.write(program.model_dump_json())
        except FileExistsError:
            return False
        logger.info("job_registered", extra={"job_id": program.id})
        return True

    def update(self, program: Program) -> None:
        """Rewrite the marker contents in place without changing state."""

        state = self.state_of(program.id)
        if state is None:
            raise JobStateError(f"job {program.id} is not registered")
        self.marker_path(program.id, state).write_text(
            program.model_dump_json(), encoding="utf-8"
        )

    def _transition(self, job_id: str, src: JobState, dst: JobState) -> None:
        src_path = self.marker_path(job_id, src)
        dst_path = self.marker_path(job_id, dst)
        if dst_path.exists():
            raise JobStateError(f"job {job_id} is already {dst.value}")
        try:
            os.rename(src_path, dst_path)
        except FileNotFoundError as exc:
            raise JobStateError(
                f"job {job_id} cannot move to {dst.value}: not {src.value}"
            ) from exc
        logger.info(
            "job_state_changed",
            extra={"job_id": job_id, "from": src.value, "to": dst.value},
        )

    def mark_processing(self, job_id: str) -> None:
        self._transition(job_id, JobState.UNPROCESSED, JobState.PROCESSING)

    def mark_processed(self, job_id: str) -> None:
        self._transition(job_id, JobState.PROCESSING, JobState.PROCESSED)

    def revert_to_unprocessed(self, job_id: str) -> None:
        self._transition(job_id, JobState.PROCESSING, JobState.UNPROCESSED)

    def mark_failed(self, job_id: str) -> None:
        self._transition(job_id, JobState.PROCESSING, JobState.FAILED)

    def reset(self, job_id: str) -> None:
        """Operator recovery: return a stuck Processing or Failed job to the queue."""

        state = self.state_of(job_id)
        if state not in (JobState.PROCESSING, JobState.FAILED):
            current = state.value if state else "unregistered"
            raise JobStateError(f"job {job_id} cannot be reset from {current}")
        self._transition(job_id, state, JobState.UNPROCESSED)
