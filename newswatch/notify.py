"""Format job reports and deliver them to registered webhooks."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

import httpx

from .schemas import Interval, Program

log = logging.getLogger("newswatch.notify")

REPORT_RULE = "======================"


def seconds_to_time(seconds: int) -> str:
    s = seconds % 60
    m = (seconds % 3600) // 60
    h = (seconds % 86400) // 3600
    return f"{h}:{m}:{s}"


def format_airtime(program: Program) -> str:
    return program.airtime.strftime("%Y-%m-%d %H:%M:%S UTC")


def format_report(
    program: Program,
    intervals: Mapping[str, List[Interval]],
    details_base: str = "https://archive.org/details",
) -> str:
    link = f"{details_base.rstrip('/')}/{program.id}"
    lines = [
        REPORT_RULE,
        f"<{link}|{program.network},{program.program},{format_airtime(program)}>",
    ]
    for label, runs in intervals.items():
        if not runs:
            lines.append(f":no_entry_sign: `{label}` Not Found")
            continue
        lines.append(f":white_check_mark: `{label}` Detected")
        for start, end in runs:
            lines.append(
                f" * {seconds_to_time(start)} - {seconds_to_time(end)} "
                f"<{link}#start/{start}/end/{end}|({end - start}s)>"
            )
    return "\n".join(lines)


class WebhookRegistry:
    """Append-only list of webhook URLs, one per line."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> List[str]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        return [line.strip() for line in text.splitlines() if line.strip()]

    def add(self, url: str) -> None:
        url = url.strip()
        if not url:
            raise ValueError("webhook url is empty")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(url + "\n")
        log.info("webhook.registered", extra={"webhook_url": url})


def _build_signature(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


async def _deliver(client: httpx.AsyncClient, url: str, body: bytes, headers: Dict[str, str]) -> bool:
    try:
        response = await client.post(url, content=body, headers=headers)
    except httpx.HTTPError as exc:
        log.info("webhook.attempt.error", extra={"webhook_url": url, "error": str(exc)})
        return False
    if 200 <= response.status_code < 300:
        log.info(
            "webhook.delivered",
            extra={"status_code": response.status_code, "webhook_url": url},
        )
        return True
    log.info(
        "webhook.attempt.non_2xx",
        extra={"status_code": response.status_code, "webhook_url": url},
    )
    return False


async def publish(
    text: str,
    webhook_urls: Iterable[str],
    secret: Optional[str] = None,
    *,
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    """Post ``{"text": text}`` to every webhook, once each, best effort.

    Returns how many endpoints accepted the report.
    """

    urls = [url for url in webhook_urls if url.strip()]
    if not urls:
        return 0
    body = json.dumps({"text": text}, ensure_ascii=False).encode("utf-8")
    headers = {"Content-type": "application/json"}
    if secret:
        headers["X-Signature"] = _build_signature(secret, body)

    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        outcomes = await asyncio.gather(*(_deliver(client, url, body, headers) for url in urls))
    return sum(1 for delivered in outcomes if delivered)
