import json

from newswatch.settings import Settings
from newswatch.storage import (
    LocalArchive,
    S3Archive,
    build_archive,
    processed_results_key,
    raw_results_key,
)

JOB = "FOXNEWSW_20230101230000_Hannity"


class FakeS3:
    def __init__(self):
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[(Bucket, Key)] = (Body, ContentType)


def test_result_keys():
    assert raw_results_key(JOB) == f"results/{JOB}.json"
    assert processed_results_key(JOB) == f"results/{JOB}_processed.json"


def test_local_archive_writes_json_under_root(tmp_path):
    archive = LocalArchive(tmp_path / "archive")
    location = archive.put_json(processed_results_key(JOB), {"labels": {"Sean Hannity": [[5, 9]]}})

    path = tmp_path / "archive" / "results" / f"{JOB}_processed.json"
    assert location == str(path.resolve())
    assert json.loads(path.read_text()) == {"labels": {"Sean Hannity": [[5, 9]]}}
    assert [p.name for p in path.parent.iterdir()] == [path.name]


def test_s3_archive_prefixes_keys():
    client = FakeS3()
    archive = S3Archive("news-results", "/worker/", client=client)

    location = archive.put_json(raw_results_key(JOB), [{"index": 0}])

    assert location == f"s3://news-results/worker/results/{JOB}.json"
    body, content_type = client.objects[("news-results", f"worker/results/{JOB}.json")]
    assert json.loads(body) == [{"index": 0}]
    assert content_type == "application/json"


def test_build_archive_defaults_to_local(tmp_path):
    archive = build_archive(Settings(results_dir=tmp_path / "results"))
    assert isinstance(archive, LocalArchive)
