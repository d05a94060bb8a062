import asyncio
from pathlib import Path

import httpx
import pytest

import newswatch.segment as segment
from newswatch.discovery import parse_program_id
from newswatch.segment import SplitError, probe_duration_sec, read_manifest, split_video
from newswatch.settings import Settings
from newswatch.video import DownloadError, download_program

PROGRAM = parse_program_id("MSNBCW_20230101060000_Morning_Joe")


def test_download_streams_with_archive_cookies(tmp_path):
    settings = Settings(archive_user_id="user%40example.org", archive_sig="abc123")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["cookie"] = request.headers.get("Cookie")
        return httpx.Response(200, content=b"x" * 2048)

    dest = tmp_path / "videos" / f"{PROGRAM.id}.mp4"
    asyncio.run(download_program(PROGRAM, str(dest), settings, transport=httpx.MockTransport(handler)))

    assert seen["url"] == f"http://archive.org/download/{PROGRAM.id}/{PROGRAM.id}.mp4"
    assert seen["cookie"] == "logged-in-user=user%40example.org;logged-in-sig=abc123"
    assert dest.read_bytes() == b"x" * 2048
    assert not Path(str(dest) + ".part").exists()


@pytest.mark.parametrize(
    "response",
    [httpx.Response(403, text="forbidden"), httpx.Response(200, content=b"")],
)
def test_download_failures_raise_download_error(tmp_path, response):
    dest = tmp_path / f"{PROGRAM.id}.mp4"
    transport = httpx.MockTransport(lambda request: response)

    with pytest.raises(DownloadError):
        asyncio.run(download_program(PROGRAM, str(dest), Settings(), transport=transport))
    assert not dest.exists()


def test_download_transport_errors_raise_download_error(tmp_path):
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(DownloadError):
        asyncio.run(
            download_program(
                PROGRAM,
                str(tmp_path / "v.mp4"),
                Settings(),
                transport=httpx.MockTransport(handler),
            )
        )


def test_read_manifest_orders_and_skips_blanks(tmp_path):
    manifest = tmp_path / "job_ffmpeg.out"
    manifest.write_text("job.mp4_OUTPUT0.mp4\n\njob.mp4_OUTPUT1.mp4\n  \n")
    assert read_manifest(str(manifest), "/videos") == [
        "/videos/job.mp4_OUTPUT0.mp4",
        "/videos/job.mp4_OUTPUT1.mp4",
    ]


def test_split_builds_segment_command_and_parses_manifest(tmp_path, monkeypatch):
    src = tmp_path / "job.mp4"
    manifest = tmp_path / "job_ffmpeg.out"
    commands = []

    async def fake_run(cmd):
        commands.append(cmd)
        manifest.write_text("job.mp4_OUTPUT0.mp4\njob.mp4_OUTPUT1.mp4\n")
        return b"", b""

    monkeypatch.setattr(segment, "_run", fake_run)
    paths = asyncio.run(split_video(str(src), str(manifest), 1200, "/usr/bin/ffmpeg"))

    assert paths == [str(tmp_path / "job.mp4_OUTPUT0.mp4"), str(tmp_path / "job.mp4_OUTPUT1.mp4")]
    cmd = commands[0]
    assert cmd[0] == "/usr/bin/ffmpeg"
    assert cmd[cmd.index("-segment_time") + 1] == "1200"
    assert cmd[cmd.index("-segment_list") + 1] == str(manifest)
    assert cmd[-1] == f"{src}_OUTPUT%d.mp4"


def test_split_with_empty_manifest_fails(tmp_path, monkeypatch):
    manifest = tmp_path / "job_ffmpeg.out"

    async def fake_run(cmd):
        manifest.write_text("\n")
        return b"", b""

    monkeypatch.setattr(segment, "_run", fake_run)
    with pytest.raises(SplitError):
        asyncio.run(split_video(str(tmp_path / "job.mp4"), str(manifest)))


def test_missing_ffmpeg_is_a_split_error(tmp_path):
    with pytest.raises(SplitError, match="executable was not found"):
        asyncio.run(
            split_video(
                str(tmp_path / "job.mp4"),
                str(tmp_path / "m.out"),
                ffmpeg_path=str(tmp_path / "no-such-ffmpeg"),
            )
        )


def test_probe_parses_decimal_seconds(monkeypatch):
    async def fake_run(cmd):
        assert "format=duration" in cmd
        return b"1199.981000\n", b""

    monkeypatch.setattr(segment, "_run", fake_run)
    assert asyncio.run(probe_duration_sec("seg.mp4")) == pytest.approx(1199.981)


def test_probe_without_duration_fails(monkeypatch):
    async def fake_run(cmd):
        return b"N/A\n", b""

    monkeypatch.setattr(segment, "_run", fake_run)
    with pytest.raises(SplitError):
        asyncio.run(probe_duration_sec("seg.mp4"))
