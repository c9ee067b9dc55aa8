import json
import math
from typing import Any, Dict, Optional

import httpx

from solver.models import Verdict, describe_error, log

SUBMIT_TIMEOUT = 30.0


def _coerce(value):
    # numpy / pandas scalars and arrays coming back from generated code
    for attr in ("item", "tolist"):
        fn = getattr(value, attr, None)
        if callable(fn):
            try:
                return fn()
            except (TypeError, ValueError):
                continue
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _finite(value):
    # JSON has no NaN or Infinity; such answers go out as null
    if isinstance(value, float) and not math.isfinite(value):
        log("[SUBMISSION]", "Non-finite answer value replaced with null:", value)
        return None
    if isinstance(value, list):
        return [_finite(v) for v in value]
    if isinstance(value, dict):
        return {k: _finite(v) for k, v in value.items()}
    return value


def jsonable(answer):
    return _finite(json.loads(json.dumps(answer, default=_coerce)))


def build_payload(email: str, secret: str, target: str, answer: Any) -> Dict[str, Any]:
    return {
        "email": email,
        "secret": secret,
        "url": target,
        "answer": jsonable(answer),
    }


def parse_verdict(raw: str, status_code: Optional[int] = None) -> Verdict:
    """Interpret a submission response body; anything but a JSON object is no verdict."""
    try:
        body = json.loads(raw)
    except (TypeError, ValueError) as e:
        log("[SUBMISSION]", "Non-JSON response:", describe_error(e))
        return Verdict(status_code=status_code, raw=raw or "")
    if not isinstance(body, dict):
        log("[SUBMISSION]", "Response is not a JSON object:", str(raw)[:200])
        return Verdict(status_code=status_code, raw=raw)
    next_url = body.get("url")
    if not isinstance(next_url, str) or not next_url.strip():
        next_url = None
    return Verdict(
        correct=body.get("correct") is True,
        next_url=next_url.strip() if next_url else None,
        status_code=status_code,
        body=body,
        raw=raw,
    )


async def post_answer(
    endpoint: str,
    payload: Dict[str, Any],
    client: Optional[httpx.AsyncClient] = None,
    tag: str = "[SUBMISSION]",
) -> Verdict:
    """POST the answer. Network errors raise; unreadable bodies do not."""
    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(timeout=SUBMIT_TIMEOUT)
    try:
        log(tag, "Posting answer to:", endpoint)
        resp = await client.post(endpoint, json=payload)
        log(tag, "Status:", resp.status_code)
        try:
            raw = resp.text
        except (UnicodeDecodeError, httpx.ResponseNotRead) as e:
            log(tag, "Failed reading body:", describe_error(e))
            raw = ""
        log(tag, "Raw text:", raw[:2000])
    finally:
        if own_client:
            await client.aclose()
    return parse_verdict(raw, resp.status_code)
