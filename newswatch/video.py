import logging
import os
from typing import Dict, Optional

import httpx

from .schemas import Program
from .settings import Settings

logger = logging.getLogger(__name__)


class DownloadError(RuntimeError):
    """Raised when a program recording could not be fetched."""


def download_url(program: Program, base_url: str) -> str:
    return f"{base_url.rstrip('/')}/{program.id}/{program.id}.mp4"


def archive_headers(user_id: Optional[str], sig: Optional[str]) -> Dict[str, str]:
    headers = {
        "User-Agent": "Mozilla/5.0",
        "Accept": "*/*",
    }
    if user_id or sig:
        headers["Cookie"] = f"logged-in-user={user_id or ''};logged-in-sig={sig or ''}"
    return headers


async def download_program(
    program: Program,
    dest: str,
    settings: Settings,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Stream the program's full recording to ``dest``.

    The body lands in ``dest + '.part'`` and is renamed into place only after
    the transfer finished, so a partial file never looks like a download.
    """

    os.makedirs(os.path.dirname(dest) or ".", exist_ok=True)
    url = download_url(program, settings.archive_download_base)
    headers = archive_headers(settings.archive_user_id, settings.archive_sig)
    timeout = httpx.Timeout(
        settings.HTTP_TOTAL_TIMEOUT,
        connect=settings.HTTP_CONNECT_TIMEOUT,
        read=settings.HTTP_READ_TIMEOUT,
    )
    partial = dest + ".part"
    got = 0
    try:
        async with httpx.AsyncClient(
            headers=headers, timeout=timeout, follow_redirects=True, transport=transport
        ) as client:
            async with client.stream("GET", url) as response:
                if response.status_code >= 400:
                    raise DownloadError(
                        f"download of {program.id} returned HTTP {response.status_code}"
                    )
                with open(partial, "wb") as fh:
                    async for chunk in response.aiter_bytes(1024 * 1024):
                        if not chunk:
                            continue
                        fh.write(chunk)
                        got += len(chunk)
    except httpx.HTTPError as exc:
        _discard(partial)
        raise DownloadError(f"download of {program.id} failed: {exc}") from exc
    except DownloadError:
        _discard(partial)
        raise

    if got == 0:
        _discard(partial)
        raise DownloadError(f"download of {program.id} returned an empty body")

    os.replace(partial, dest)
    logger.info("video_download_complete", extra={"job_id": program.id, "bytes": got})
    return dest


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
