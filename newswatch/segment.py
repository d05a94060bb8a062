import asyncio
import logging
import os
from typing import List

logger = logging.getLogger(__name__)


class SplitError(RuntimeError):
    """Raised when a recording could not be split or probed."""


async def _run(cmd: list[str]) -> tuple[bytes, bytes]:
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise SplitError(f"{cmd[0]} executable was not found") from exc
    out, err = await proc.communicate()
    if proc.returncode != 0:
        raise SplitError(
            f"{os.path.basename(cmd[0])} error ({proc.returncode}): "
            f"{err.decode(errors='ignore')[:400]}"
        )
    return out, err


def read_manifest(manifest_path: str, segments_dir: str) -> List[str]:
    """Return the segment paths listed in an ffmpeg segment list, in order."""

    with open(manifest_path, "r", encoding="utf-8") as fh:
        lines = fh.read().splitlines()
    return [os.path.join(segments_dir, line.strip()) for line in lines if line.strip()]


async def split_video(
    src: str,
    manifest_path: str,
    segment_time: int = 1200,
    ffmpeg_path: str = "ffmpeg",
) -> List[str]:
    """Split ``src`` into ``segment_time``-second pieces with stream copy.

    Segments are written next to the source as ``<src>_OUTPUT<n>.mp4`` and
    returned in the order ffmpeg listed them in ``manifest_path``.
    """

    cmd = [
        ffmpeg_path,
        "-y",
        "-hide_banner",
        "-loglevel",
        "error",
        "-i",
        src,
        "-acodec",
        "copy",
        "-vcodec",
        "copy",
        "-f",
        "segment",
        "-segment_time",
        str(segment_time),
        "-reset_timestamps",
        "1",
        "-map",
        "0",
        "-segment_list",
        manifest_path,
        f"{src}_OUTPUT%d.mp4",
    ]
    await _run(cmd)
    try:
        segments = read_manifest(manifest_path, os.path.dirname(src))
    except OSError as exc:
        raise SplitError(f"segment list {manifest_path} is unreadable") from exc
    if not segments:
        raise SplitError(f"ffmpeg produced no segments for {src}")
    logger.info("video_split", extra={"segments": len(segments)})
    return segments


async def probe_duration_sec(path: str, ffprobe_path: str = "ffprobe") -> float:
    out, _ = await _run(
        [
            ffprobe_path,
            "-v",
            "quiet",
            "-i",
            path,
            "-show_entries",
            "format=duration",
            "-of",
            "csv=p=0",
        ]
    )
    text = out.decode(errors="ignore").strip()
    try:
        return max(0.0, float(text))
    except ValueError as exc:
        raise SplitError(f"ffprobe returned no duration for {path}: {text!r}") from exc
