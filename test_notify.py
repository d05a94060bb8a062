import asyncio
import json

import httpx

from newswatch.discovery import parse_program_id
from newswatch.notify import WebhookRegistry, format_report, publish, seconds_to_time

PROGRAM = parse_program_id("CNNW_20230101123000_MorningShow")
LINK = "https://archive.org/details/CNNW_20230101123000_MorningShow"


def test_seconds_to_time_is_unpadded():
    assert seconds_to_time(0) == "0:0:0"
    assert seconds_to_time(65) == "0:1:5"
    assert seconds_to_time(3725) == "1:2:5"
    assert seconds_to_time(2405) == "0:40:5"


def test_format_report_lists_intervals_and_misses():
    report = format_report(
        PROGRAM,
        {"Anderson Cooper": [(1205, 1206), (2405, 2405)], "Tucker Carlson": []},
    )

    assert report.splitlines() == [
        "======================",
        f"<{LINK}|CNNW,MorningShow,2023-01-01 12:30:00 UTC>",
        ":white_check_mark: `Anderson Cooper` Detected",
        f" * 0:20:5 - 0:20:6 <{LINK}#start/1205/end/1206|(1s)>",
        f" * 0:40:5 - 0:40:5 <{LINK}#start/2405/end/2405|(0s)>",
        ":no_entry_sign: `Tucker Carlson` Not Found",
    ]


def test_registry_skips_blank_lines(tmp_path):
    registry = WebhookRegistry(tmp_path / "webhooks.txt")
    assert registry.load() == []

    registry.add("https://hooks.test/a")
    with (tmp_path / "webhooks.txt").open("a") as fh:
        fh.write("\n\r\n   \n")
    registry.add("https://hooks.test/b")

    assert registry.load() == ["https://hooks.test/a", "https://hooks.test/b"]


def test_publish_is_best_effort_per_endpoint():
    attempted = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempted.append(str(request.url))
        if request.url.host == "down.test":
            raise httpx.ConnectError("connection refused", request=request)
        if request.url.host == "broken.test":
            return httpx.Response(500)
        assert request.headers["content-type"] == "application/json"
        assert json.loads(request.content) == {"text": "hello"}
        return httpx.Response(200, text="ok")

    delivered = asyncio.run(
        publish(
            "hello",
            ["https://down.test/x", "https://broken.test/y", "https://ok.test/z"],
            transport=httpx.MockTransport(handler),
        )
    )

    assert delivered == 1
    assert sorted(attempted) == [
        "https://broken.test/y",
        "https://down.test/x",
        "https://ok.test/z",
    ]


def test_publish_signs_when_secret_is_set():
    signatures = []

    def handler(request: httpx.Request) -> httpx.Response:
        signatures.append(request.headers.get("X-Signature"))
        return httpx.Response(200)

    asyncio.run(publish("hi", ["https://ok.test/"], "s3cret", transport=httpx.MockTransport(handler)))

    assert signatures[0].startswith("sha256=")


def test_publish_without_endpoints_sends_nothing():
    assert asyncio.run(publish("hello", [])) == 0
