import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

LOG_PREFIX = "[SOLVER]"
logger = logging.getLogger("solver")


def log(tag, *args):
    logger.info("%s %s %s", LOG_PREFIX, tag, " ".join(str(a) for a in args))


def format_time(seconds):
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        mins = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{mins}m {secs}s"
    else:
        hours = int(seconds // 3600)
        mins = int((seconds % 3600) // 60)
        return f"{hours}h {mins}m"


def describe_error(err) -> str:
    if err is None:
        return ""
    if isinstance(err, BaseException):
        text = str(err) or type(err).__name__
        return f"{type(err).__name__}: {text}"
    return str(err)


@dataclass
class Task:
    target: str
    deadline_seconds: float
    start_time: float = field(default_factory=time.monotonic)


@dataclass
class PageSnapshot:
    """Everything extracted from one rendered page."""

    title: str = ""
    url: str = ""
    text: str = ""
    html: str = ""
    links: List[str] = field(default_factory=list)
    audio: List[str] = field(default_factory=list)
    video: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)
    embeds: List[str] = field(default_factory=list)
    objects: List[str] = field(default_factory=list)
    shadow: List[str] = field(default_factory=list)
    network_files: List[str] = field(default_factory=list)


@dataclass
class AggregatedContent(PageSnapshot):
    """Root page merged with its one-hop linked pages."""

    @classmethod
    def from_snapshot(cls, snap: PageSnapshot) -> "AggregatedContent":
        return cls(
            title=snap.title,
            url=snap.url,
            text=snap.text,
            html=snap.html,
            links=list(snap.links),
            audio=list(snap.audio),
            video=list(snap.video),
            images=list(snap.images),
            sources=list(snap.sources),
            embeds=list(snap.embeds),
            objects=list(snap.objects),
            shadow=list(snap.shadow),
            network_files=list(snap.network_files),
        )

    def merge(self, snap: PageSnapshot) -> None:
        self.text += "\n" + (snap.text or "")
        self.url += "\n" + (snap.url or "")
        self.html += "\n" + (snap.html or "")
        self.links.extend(snap.links)
        self.audio.extend(snap.audio)
        self.video.extend(snap.video)
        self.images.extend(snap.images)
        self.sources.extend(snap.sources)
        self.embeds.extend(snap.embeds)
        self.objects.extend(snap.objects)
        self.network_files.extend(snap.network_files)

    def media_refs(self) -> List[str]:
        return [
            *self.images,
            *self.sources,
            *self.embeds,
            *self.objects,
        ]


@dataclass
class Attempt:
    """State owned by one pass from content acquisition to submission.

    A new instance is created for every whole-attempt restart, so nothing
    from a rejected attempt leaks into the next one.
    """

    number: int
    content: Optional[AggregatedContent] = None
    candidates: List[str] = field(default_factory=list)
    files: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    uploads: List[Any] = field(default_factory=list)
    question: Optional[str] = None
    needs_code: bool = False
    code: Optional[str] = None
    answer: Any = None
    last_error: Any = None

    @property
    def filenames(self) -> List[str]:
        return list(self.files.keys())

    def record_error(self, err) -> None:
        self.last_error = err


@dataclass
class Verdict:
    correct: bool = False
    next_url: Optional[str] = None
    status_code: Optional[int] = None
    body: Optional[Dict[str, Any]] = None
    raw: str = ""

    @property
    def parsed(self) -> bool:
        return self.body is not None
