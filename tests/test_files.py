import asyncio

import pytest

from conftest import FakeClock, FakeFiles, no_sleep
from solver.deadline import Deadline, DeadlineExceeded, RetryPolicy
from solver.files import (
    candidate_files,
    download_files,
    filename_for,
    is_file_url,
    is_page_url,
    media_type_for,
    upload_files,
)
from solver.models import AggregatedContent


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://x.test/data/a.pdf", True),
        ("https://x.test/data/a.pdf/", True),
        ("https://x.test/audio.opus?raw=1", True),
        ("https://x.test/c.xyz", True),
        ("https://x.test/archive.a", True),
        ("https://x.test/demo", False),
        ("https://x.test/demo/", False),
        ("https://x.test/", False),
        ("https://x.test/v1.", False),
    ],
)
def test_is_file_url(url, expected):
    assert is_file_url(url) is expected


def test_is_page_url_requires_http_and_no_extension():
    assert is_page_url("https://x.test/next")
    assert is_page_url("http://x.test/")
    assert not is_page_url("https://x.test/a.csv")
    assert not is_page_url("mailto:someone@x.test")
    assert not is_page_url("ftp://x.test/page")


def test_media_type_table():
    assert media_type_for("a.pdf") == "application/pdf"
    assert media_type_for("Data.CSV") == "text/csv"
    assert media_type_for("clip.opus") == "audio/opus"
    assert media_type_for("pic.jpeg") == "image/jpeg"
    assert media_type_for("c.xyz") == "application/octet-stream"
    assert media_type_for("README") == "application/octet-stream"


def test_filename_falls_back_to_random_name():
    assert filename_for("https://x.test/files/a.pdf") == "a.pdf"
    name = filename_for("https://x.test/")
    assert name.startswith("file-") and len(name) > len("file-")


def test_candidate_files_are_deduplicated_in_order():
    content = AggregatedContent(
        url="https://x.test/q1",
        links=[
            "https://x.test/a.pdf",
            "https://x.test/b.png",
            "https://x.test/b.png",
            "https://x.test/c.xyz",
            "https://x.test/next-page",
        ],
        images=["https://x.test/b.png"],
        audio=["https://x.test/clip.mp3"],
        network_files=["https://x.test/a.pdf", "https://cdn.test/hidden.csv"],
    )

    assert candidate_files(content) == [
        "https://x.test/a.pdf",
        "https://x.test/b.png",
        "https://x.test/c.xyz",
        "https://x.test/clip.mp3",
        "https://cdn.test/hidden.csv",
    ]


def test_candidate_files_ignore_inline_data_uris():
    content = AggregatedContent(images=["data:image/png;base64,AAAA", "https://x.test/a.png"])
    assert candidate_files(content) == ["https://x.test/a.png"]


def test_unrecognized_types_are_never_downloaded(tmp_path):
    files = FakeFiles()
    candidates = ["https://x.test/a.pdf", "https://x.test/b.png", "https://x.test/c.xyz"]

    registry = asyncio.run(
        download_files(candidates, tmp_path, deadline=None, policy=RetryPolicy(delay=0),
                       sleep=no_sleep, fetch=files.fetch)
    )

    assert list(registry) == ["a.pdf", "b.png"]
    assert "https://x.test/c.xyz" not in files.fetched
    assert (tmp_path / "a.pdf").read_bytes() == b"payload"
    assert not (tmp_path / "c.xyz").exists()


def test_download_retries_until_it_succeeds(tmp_path):
    files = FakeFiles(contents={"https://x.test/a.csv": b"1,2,3"}, failures=3)

    registry = asyncio.run(
        download_files(["https://x.test/a.csv"], tmp_path, deadline=None,
                       policy=RetryPolicy(delay=0), sleep=no_sleep, fetch=files.fetch)
    )

    assert len(files.fetched) == 4
    assert registry["a.csv"] == str((tmp_path / "a.csv").resolve())


def test_colliding_filenames_last_write_wins(tmp_path):
    files = FakeFiles(contents={
        "https://one.test/data.json": b'{"v": 1}',
        "https://two.test/data.json": b'{"v": 2}',
    })

    registry = asyncio.run(
        download_files(["https://one.test/data.json", "https://two.test/data.json"], tmp_path,
                       deadline=None, policy=RetryPolicy(delay=0), sleep=no_sleep,
                       fetch=files.fetch)
    )

    assert list(registry) == ["data.json"]
    assert (tmp_path / "data.json").read_bytes() == b'{"v": 2}'


def test_registry_is_read_only(tmp_path):
    files = FakeFiles()
    registry = asyncio.run(
        download_files(["https://x.test/a.txt"], tmp_path, deadline=None,
                       policy=RetryPolicy(delay=0), sleep=no_sleep, fetch=files.fetch)
    )
    with pytest.raises(TypeError):
        registry["b.txt"] = "/tmp/b.txt"


def test_download_checks_deadline_before_each_file(tmp_path):
    clock = FakeClock()
    deadline = Deadline(10, clock=clock)
    files = FakeFiles()

    async def slow_fetch(client, url):
        clock.advance(11)
        return await files.fetch(client, url)

    with pytest.raises(DeadlineExceeded):
        asyncio.run(
            download_files(["https://x.test/a.txt", "https://x.test/b.txt"], tmp_path,
                           deadline=deadline, policy=RetryPolicy(delay=0), sleep=no_sleep,
                           fetch=slow_fetch)
        )
    assert files.fetched == ["https://x.test/a.txt"]


def test_uploads_follow_registry_order_and_retry():
    seen = []
    failures = {"b.csv": 2}

    async def uploader(path, mime):
        seen.append((path, mime))
        name = path.rsplit("/", 1)[-1]
        if failures.get(name):
            failures[name] -= 1
            raise RuntimeError("503 upload unavailable")
        return f"ref:{name}"

    refs = asyncio.run(
        upload_files({"a.pdf": "/d/a.pdf", "b.csv": "/d/b.csv"}, uploader, deadline=None,
                     policy=RetryPolicy(delay=0), sleep=no_sleep)
    )

    assert refs == ["ref:a.pdf", "ref:b.csv"]
    assert seen[0] == ("/d/a.pdf", "application/pdf")
    assert seen.count(("/d/b.csv", "text/csv")) == 3
