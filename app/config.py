import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _env_str(name: str, default: str = "") -> str:
    return str(os.getenv(name, default) or default).strip()


def _env_float(name: str, default: float) -> float:
    try:
        return float(str(os.getenv(name, default)).strip())
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = str(os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    email: str = ""
    secret: str = ""
    self_url: str = ""
    gemini_api_key: str = ""
    model: str = "gemini-2.5-flash"
    light_model: str = "gemini-2.5-flash-lite"
    deadline_seconds: float = 180.0
    retry_delay: float = 1.0
    endpoint_retry_delay: float = 0.5
    upload_retry_delay: float = 2.0
    max_attempts: Optional[int] = None
    backoff: float = 1.0
    degraded_endpoint_attempts: int = 3
    downloads_dir: Path = field(default_factory=lambda: Path("downloads"))
    placeholder_answer: str = "placeholderAnswer"
    port: int = 3000

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        max_attempts = _env_int("RETRY_MAX_ATTEMPTS", None)
        if max_attempts is not None and max_attempts < 1:
            max_attempts = None
        return cls(
            email=_env_str("EMAIL"),
            secret=_env_str("MY_SECRET") or _env_str("QUIZ_SECRET"),
            self_url=_env_str("SELF_URL").rstrip("/"),
            gemini_api_key=_env_str("GEMINI_API_KEY"),
            model=_env_str("LLM_MODEL", cls.model),
            light_model=_env_str("LLM_LIGHT_MODEL", cls.light_model),
            deadline_seconds=max(1.0, _env_float("TASK_DEADLINE_SECONDS", cls.deadline_seconds)),
            retry_delay=max(0.0, _env_float("RETRY_DELAY_SECONDS", cls.retry_delay)),
            endpoint_retry_delay=max(
                0.0, _env_float("SUBMIT_RETRY_DELAY_SECONDS", cls.endpoint_retry_delay)
            ),
            upload_retry_delay=max(
                0.0, _env_float("UPLOAD_RETRY_DELAY_SECONDS", cls.upload_retry_delay)
            ),
            max_attempts=max_attempts,
            backoff=max(1.0, _env_float("RETRY_BACKOFF", cls.backoff)),
            degraded_endpoint_attempts=max(
                1, _env_int("DEGRADED_ENDPOINT_ATTEMPTS", cls.degraded_endpoint_attempts) or 1
            ),
            downloads_dir=Path(_env_str("DOWNLOADS_DIR", "downloads")),
            placeholder_answer=_env_str("PLACEHOLDER_ANSWER", cls.placeholder_answer),
            port=_env_int("PORT", cls.port) or cls.port,
        )
