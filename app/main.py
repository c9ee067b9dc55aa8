import json
import logging
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from pydantic import BaseModel

from app.config import Settings
from solver.models import log
from solver.runner import solve_task
from solver.supervisor import TaskSupervisor

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

settings = Settings.from_env()
settings.downloads_dir.mkdir(parents=True, exist_ok=True)
supervisor = TaskSupervisor(settings, solve_task)

app = FastAPI(title="Challenge Solver")


class TaskAccepted(BaseModel):
    status: str = "accepted"


async def _read_body(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid JSON")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="invalid JSON")
    return body


def check_secret(provided: Optional[str], expected: str) -> None:
    if not provided:
        log("[AUTH]", "Missing secret")
        raise HTTPException(status_code=401, detail="missing secret")
    if provided != expected:
        log("[AUTH]", "Invalid secret")
        raise HTTPException(status_code=403, detail="invalid secret")


@app.get("/")
async def health():
    return {"message": "Everything's fine"}


@app.post("/task", response_model=TaskAccepted)
async def receive_task(request: Request, background_tasks: BackgroundTasks):
    log("[START]", "Incoming request")
    body = await _read_body(request)

    provided = (
        request.headers.get("x-secret")
        or body.get("secret")
        or request.query_params.get("secret")
    )
    check_secret(provided, settings.secret)

    target = body.get("url") or request.query_params.get("url")
    if not target or not isinstance(target, str):
        log("[REQUEST]", "Missing URL")
        raise HTTPException(status_code=400, detail="missing url")

    log("[START]", "Accepted. URL:", target)
    background_tasks.add_task(supervisor.run, target)
    return TaskAccepted()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
