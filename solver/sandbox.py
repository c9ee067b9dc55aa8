import ast
import asyncio
import base64
import importlib.util
import inspect
import io
import json
import math
import re
import uuid
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
from matplotlib.figure import Figure  # noqa: E402
import pandas as pd  # noqa: E402
import pdfplumber  # noqa: E402

from solver.models import log  # noqa: E402

GENERATED_FILENAME = "generated_task.py"
ENTRY_POINT = "solve"
ENTRY_PREFIXES = (f"def {ENTRY_POINT}(", f"async def {ENTRY_POINT}(")

# Modules a routine must not import: network access, processes, host control.
BLOCKED_MODULES = {
    "socket", "ssl", "http", "urllib", "requests", "httpx", "aiohttp", "ftplib",
    "smtplib", "subprocess", "multiprocessing", "shutil", "ctypes", "signal",
    "webbrowser", "playwright",
}
BLOCKED_CALLS = {"exec", "eval", "compile", "__import__"}

FENCE_RE = re.compile(r"^```[\w-]*\s*\n?(.*?)\n?```\s*$", re.DOTALL)


class CodeValidationError(ValueError):
    pass


class CodeExecutionError(RuntimeError):
    pass


def strip_fences(raw):
    raw = (raw or "").strip()
    m = FENCE_RE.match(raw)
    if m:
        return m.group(1).strip()
    if raw.startswith("```"):
        raw = re.sub(r"^```[\w-]*\s*", "", raw)
        raw = re.sub(r"```$", "", raw)
    return raw.strip()


def _blocked_import(tree):
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                if alias.name.split(".")[0] in BLOCKED_MODULES:
                    return alias.name
        elif isinstance(node, ast.ImportFrom):
            root = (node.module or "").split(".")[0]
            if root in BLOCKED_MODULES:
                return node.module
        elif isinstance(node, ast.Call) and isinstance(node.func, ast.Name):
            if node.func.id in BLOCKED_CALLS:
                return node.func.id + "()"
    return None


def validate_code(code):
    """Reject anything that is not a single ``solve(files)`` routine."""
    if not code or not code.strip():
        raise CodeValidationError("codegen returned empty output")
    stripped = code.lstrip()
    if stripped.startswith("{") or stripped.startswith("["):
        raise CodeValidationError("codegen returned non-code (looks like JSON)")
    if not stripped.startswith(ENTRY_PREFIXES):
        raise CodeValidationError(
            f"generated code must start with 'def {ENTRY_POINT}(files):' "
            f"or 'async def {ENTRY_POINT}(files):'"
        )
    try:
        tree = ast.parse(code)
    except SyntaxError as e:
        raise CodeValidationError(f"generated code has a syntax error: {e}") from e
    blocked = _blocked_import(tree)
    if blocked:
        raise CodeValidationError(f"generated code uses a forbidden capability: {blocked}")
    return code


def _sandbox_globals():
    return {
        "pd": pd,
        "json": json,
        "re": re,
        "math": math,
        "plt": plt,
        "pdfplumber": pdfplumber,
        "base64": base64,
    }


def _figure_to_data_uri(fig):
    buf = io.BytesIO()
    fig.savefig(buf, format="png", bbox_inches="tight")
    buf.seek(0)
    return "data:image/png;base64," + base64.b64encode(buf.read()).decode("utf-8")


def _finish(result):
    # pyplot state is shared by every task in the process; only the figure
    # handed back by this routine is rendered and closed.
    if isinstance(result, Figure):
        fig = result
        result = _figure_to_data_uri(fig)
        plt.close(fig)
    return result


def load_routine(code, workdir: Path):
    """Persist ``code`` and import it as a fresh module; returns ``solve``."""
    workdir = Path(workdir)
    workdir.mkdir(parents=True, exist_ok=True)
    path = workdir / GENERATED_FILENAME
    path.write_text(code, encoding="utf-8")

    name = f"generated_task_{uuid.uuid4().hex}"
    spec = importlib.util.spec_from_file_location(name, path)
    module = importlib.util.module_from_spec(spec)
    module.__dict__.update(_sandbox_globals())
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise CodeExecutionError(f"generated module failed to load: {e!r}") from e
    fn = getattr(module, ENTRY_POINT, None)
    if not callable(fn):
        raise CodeExecutionError(f"generated module did not define {ENTRY_POINT}()")
    return fn


async def run_generated_code(code, files: Mapping[str, str], workdir: Path) -> Any:
    """Validate, load and run a generated routine against the file registry.

    Synchronous routines run in a worker thread so other tasks keep going.
    Any error raised by the routine comes back as ``CodeExecutionError``.
    """
    validate_code(code)
    fn = load_routine(code, workdir)
    readonly = MappingProxyType(dict(files))
    log("[EXEC]", f"Running {ENTRY_POINT}() with {len(readonly)} file(s)")
    try:
        if inspect.iscoroutinefunction(fn):
            result = await fn(readonly)
        else:
            result = await asyncio.to_thread(fn, readonly)
            if inspect.isawaitable(result):
                result = await result
    except Exception as e:
        raise CodeExecutionError(f"{type(e).__name__}: {e}") from e
    return _finish(result)
