import os
import tempfile

os.environ["MY_SECRET"] = "test-secret"
os.environ["EMAIL"] = "student@example.com"
os.environ["SELF_URL"] = ""
os.environ["DOWNLOADS_DIR"] = tempfile.mkdtemp(prefix="solver-downloads-")

import pytest  # noqa: E402

from app.config import Settings  # noqa: E402
from solver.models import Verdict  # noqa: E402
from solver.scraper import snapshot_from_html  # noqa: E402


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def prompt_kind(prompt):
    if "SCRAPED PAGE URL:" in prompt:
        return "question"
    if "Output ONLY one value: true or false" in prompt:
        return "classify"
    if "Generate Python code only" in prompt:
        return "codegen"
    if "Provide ONLY the final answer" in prompt:
        return "solve"
    if "Extract the submission URL for the challenge page" in prompt:
        return "degraded_endpoint"
    if "Extract the submission URL from the provided page contents" in prompt:
        return "endpoint"
    return "unknown"


class FakeReasoning:
    """Answers by prompt kind; a list is consumed one item per call, the
    last item repeating. Exceptions in the script are raised."""

    def __init__(self, events=None, **script):
        self.script = {
            "question": "What is the sum of the numbers?",
            "classify": "false",
            "solve": "42",
            "endpoint": "https://challenge.test/submit",
            "degraded_endpoint": "https://challenge.test/submit",
        }
        self.script.update(script)
        self.calls = []
        self.uploads = []
        self.events = events if events is not None else []

    def prompts(self, kind):
        return [p for k, p, _ in self.calls if k == kind]

    async def generate(self, prompt, context=(), extra=(), light=False):
        kind = prompt_kind(prompt)
        self.calls.append((kind, prompt, list(context)))
        self.events.append(("llm", kind))
        value = self.script[kind]
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if callable(value) and not isinstance(value, type):
            value = value(prompt)
        if isinstance(value, BaseException):
            raise value
        return value

    async def upload(self, path, mime_type):
        self.uploads.append((path, mime_type))
        self.events.append(("upload", os.path.basename(path)))
        return f"ref:{os.path.basename(path)}"


class FakeSite:
    def __init__(self, pages, events=None):
        self.pages = pages
        self.rendered = []
        self.events = events if events is not None else []

    async def render(self, url):
        self.rendered.append(url)
        self.events.append(("render", url))
        page = self.pages.get(url)
        if page is None:
            raise RuntimeError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        if isinstance(page, BaseException):
            raise page
        return snapshot_from_html(page, url)


class FakeFiles:
    def __init__(self, contents=None, failures=0, events=None):
        self.contents = contents or {}
        self.failures = failures
        self.fetched = []
        self.events = events if events is not None else []

    async def fetch(self, client, url):
        self.fetched.append(url)
        self.events.append(("fetch", url))
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError(f"connection reset fetching {url}")
        return self.contents.get(url, b"payload")


class FakeSubmit:
    def __init__(self, verdicts, events=None):
        self.verdicts = list(verdicts)
        self.posted = []
        self.events = events if events is not None else []

    async def __call__(self, endpoint, payload):
        self.posted.append((endpoint, payload))
        self.events.append(("submit", payload["answer"]))
        value = self.verdicts.pop(0) if len(self.verdicts) > 1 else self.verdicts[0]
        if isinstance(value, BaseException):
            raise value
        return value


async def no_sleep(_delay):
    return None


@pytest.fixture
def settings(tmp_path):
    return Settings(
        email="student@example.com",
        secret="test-secret",
        downloads_dir=tmp_path / "downloads",
        retry_delay=0.0,
        endpoint_retry_delay=0.0,
        upload_retry_delay=0.0,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def events():
    return []


def correct(next_url=None):
    body = {"correct": True}
    if next_url:
        body["url"] = next_url
    return Verdict(correct=True, next_url=next_url, status_code=200, body=body)


def incorrect(reason="Wrong answer"):
    return Verdict(correct=False, status_code=200, body={"correct": False, "reason": reason})
