"""Discover freshly aired programs and register them as jobs."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, List, Optional, Sequence

import httpx

from .jobs import JobStore
from .schemas import Program
from .settings import Settings

logger = logging.getLogger(__name__)

_STAMP_RE = re.compile(r"^\d{14}$")
_DATE_RE = re.compile(r"^\d{8}$")
_TIME_RE = re.compile(r"^\d{6}$")


class ProgramIdError(ValueError):
    """Raised when a program id does not follow the archive naming scheme."""


def parse_program_id(program_id: str) -> Program:
    """Decode ``NETWORK_YYYYMMDDHHMMSS_program`` into a :class:`Program`.

    The archive's own ``NETWORK_YYYYMMDD_HHMMSS_program`` spelling is accepted
    as well. Airtimes are UTC.
    """

    parts = (program_id or "").strip().split("_")
    if len(parts) < 3 or not parts[0]:
        raise ProgramIdError(f"malformed program id: {program_id!r}")

    network = parts[0]
    if _STAMP_RE.match(parts[1]):
        stamp = parts[1]
        rest = parts[2:]
    elif len(parts) >= 4 and _DATE_RE.match(parts[1]) and _TIME_RE.match(parts[2]):
        stamp = parts[1] + parts[2]
        rest = parts[3:]
    else:
        raise ProgramIdError(f"malformed program id: {program_id!r}")

    program = "_".join(rest)
    if not program:
        raise ProgramIdError(f"program id has no program name: {program_id!r}")

    try:
        airtime = datetime.strptime(stamp, "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError as exc:
        raise ProgramIdError(f"invalid airtime in program id: {program_id!r}") from exc

    return Program(id=program_id, network=network, airtime=airtime, program=program)


def _ids_from_payload(payload: Any) -> List[str]:
    if isinstance(payload, dict):
        payload = list(payload.keys())
    if not isinstance(payload, list):
        return []
    return [item for item in payload if isinstance(item, str)]


async def fetch_program_ids(
    listing_url: str,
    *,
    timeout: float = 30.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[str]:
    """Fetch candidate program ids from the archive listing."""

    async with httpx.AsyncClient(
        timeout=timeout, follow_redirects=True, transport=transport
    ) as client:
        response = await client.get(listing_url)
        response.raise_for_status()
        try:
            payload = response.json()
        except ValueError:
            logger.warning("listing_invalid_json", extra={"url": listing_url})
            return []
    ids = _ids_from_payload(payload)
    logger.info("listing_fetched", extra={"count": len(ids)})
    return ids


def filter_programs(
    program_ids: Iterable[str],
    now: datetime,
    store: JobStore,
    networks: Sequence[str],
    window_sec: float = 86400,
) -> List[Program]:
    """Keep programs that aired near ``now`` on a tracked network and are new."""

    window = timedelta(seconds=window_sec)
    allowed = {network.upper() for network in networks}
    kept: List[Program] = []
    for program_id in program_ids:
        try:
            program = parse_program_id(program_id)
        except ProgramIdError:
            logger.debug("program_id_dropped", extra={"program_id": program_id})
            continue
        if abs(now - program.airtime) > window:
            continue
        if program.network.upper() not in allowed:
            continue
        if store.is_registered(program.id):
            continue
        kept.append(program)
    return kept


def register_programs(programs: Iterable[Program], store: JobStore) -> List[str]:
    registered = [program.id for program in programs if store.register(program)]
    return registered


async def discover(
    store: JobStore,
    settings: Settings,
    *,
    now: Optional[datetime] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[str]:
    """Run one discovery tick and return the ids that were registered."""

    program_ids = await fetch_program_ids(
        settings.listing_url,
        timeout=settings.HTTP_CONNECT_TIMEOUT + settings.HTTP_READ_TIMEOUT,
        transport=transport,
    )
    current = now or datetime.now(timezone.utc)
    programs = filter_programs(
        program_ids,
        current,
        store,
        settings.networks,
        settings.recency_window_sec,
    )
    registered = register_programs(programs, store)
    logger.info(
        "discovery_tick",
        extra={"candidates": len(program_ids), "registered": len(registered)},
    )
    return registered
