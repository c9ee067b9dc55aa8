import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from llm_client import ReasoningClient
from solver import prompts
from solver.deadline import (
    Deadline,
    DeadlineExceeded,
    RetryExhausted,
    RetryPolicy,
    retry_until_deadline,
)
from solver.files import download_files, fetch_bytes, upload_files
from solver.models import Attempt, Task, Verdict, describe_error, format_time, log
from solver.sandbox import run_generated_code, strip_fences, validate_code
from solver.scraper import aggregate_content, render_page
from solver.submit import build_payload, post_answer

ENDPOINT_JUNK = "`'\"<> \n\t"


@dataclass
class TaskOutcome:
    status: str  # "solved", "chained" or "abandoned"
    attempts: int
    verdict: Optional[Verdict] = None
    next_url: Optional[str] = None


def clean_endpoint(raw):
    url = (raw or "").strip().strip(ENDPOINT_JUNK)
    if not url.lower().startswith(("http://", "https://")):
        raise ValueError(f"reasoning service returned no usable submission URL: {raw!r}")
    return url


class Pipeline:
    """Drives one task from the challenge page to an accepted answer.

    Each attempt renders and aggregates the page, downloads and uploads the
    files it references, extracts the question, answers it (directly or by
    generating and running code) and submits. Anything other than a
    ``correct: true`` verdict throws the whole attempt away and starts over
    from rendering. Once the deadline trips, a single placeholder answer is
    submitted instead.
    """

    def __init__(
        self,
        settings,
        reasoning,
        chain: Callable[[str], Any],
        *,
        render=render_page,
        fetch=fetch_bytes,
        submit: Callable[[str, Dict[str, Any]], Awaitable[Verdict]] = post_answer,
        run_code=run_generated_code,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.reasoning = reasoning
        self.chain = chain
        self.render = render
        self.fetch = fetch
        self.submit = submit
        self.run_code = run_code
        self.clock = clock
        self.sleep = sleep

        self.policy = RetryPolicy(
            delay=settings.retry_delay,
            max_attempts=settings.max_attempts,
            backoff=settings.backoff,
        )
        self.upload_policy = RetryPolicy(
            delay=settings.upload_retry_delay,
            max_attempts=settings.max_attempts,
            backoff=settings.backoff,
        )
        self.endpoint_policy = RetryPolicy(
            delay=settings.endpoint_retry_delay,
            max_attempts=settings.max_attempts,
            backoff=settings.backoff,
        )

    # ------------------------------------------------------------------
    # task loop
    # ------------------------------------------------------------------

    async def run(self, target: str) -> TaskOutcome:
        if not self.settings.secret or " " in self.settings.secret:
            log("[WARNING]", "Secret contains whitespace or is empty.")

        task = Task(target=target, deadline_seconds=self.settings.deadline_seconds,
                    start_time=self.clock())
        deadline = Deadline(task.deadline_seconds, clock=self.clock, start=task.start_time)
        number = 0

        while True:
            try:
                deadline.check("attempt")
                number += 1
                attempt = Attempt(number=number)
                verdict = await self.run_attempt(task, attempt, deadline)
            except DeadlineExceeded as e:
                log("[TIMEOUT]", str(e))
                return await self.degraded_submit(task, attempts=number)
            except Exception as e:
                log("[ERROR]", f"Attempt #{number} failed:", describe_error(e))
                await self.sleep(self.policy.delay)
                continue

            if verdict.correct:
                elapsed = format_time(deadline.elapsed())
                log("[SUBMISSION]", f"Correct after {number} attempt(s) in {elapsed}")
                if verdict.next_url:
                    self.chain(verdict.next_url)
                    return TaskOutcome("chained", number, verdict, verdict.next_url)
                log("[CHAIN]", "Completed all tasks.")
                return TaskOutcome("solved", number, verdict)

            log("[SUBMISSION]", "Answer not accepted, restarting from content acquisition")

    async def run_attempt(self, task: Task, attempt: Attempt, deadline: Deadline) -> Verdict:
        log("[ATTEMPT]", f"#{attempt.number} for {task.target} "
            f"(elapsed {format_time(deadline.elapsed())})")

        await self._retry("ACQUIRE", lambda: self.acquire(task, attempt, deadline),
                          attempt, deadline)

        attempt.question = await self._retry(
            "PHASE A", lambda: self.extract_question(attempt), attempt, deadline
        )
        attempt.needs_code = await self._retry(
            "PHASE B", lambda: self.classify(attempt), attempt, deadline
        )
        if attempt.needs_code:
            attempt.answer = await self.compute(attempt, deadline)
        else:
            attempt.answer = await self._retry(
                "PHASE C", lambda: self.solve_directly(attempt), attempt, deadline
            )
        log("[FINAL ANSWER]", attempt.answer)

        endpoint = await self._retry(
            "FIND SUBMISSION URL", lambda: self.find_endpoint(task, attempt), attempt, deadline,
            policy=self.endpoint_policy,
        )
        payload = build_payload(self.settings.email, self.settings.secret, task.target,
                                attempt.answer)
        return await self._retry(
            "SUBMISSION", lambda: self.submit(endpoint, payload), attempt, deadline
        )

    async def _retry(self, phase, call, attempt, deadline, policy=None):
        return await retry_until_deadline(
            phase,
            call,
            deadline=deadline,
            policy=policy or self.policy,
            sleep=self.sleep,
            on_error=attempt.record_error,
        )

    # ------------------------------------------------------------------
    # phases
    # ------------------------------------------------------------------

    async def acquire(self, task: Task, attempt: Attempt, deadline: Deadline) -> None:
        content, candidates = await aggregate_content(
            task.target, render=self.render, deadline=deadline
        )
        log("[PROCESS]", "Downloading files")
        files = await download_files(
            candidates,
            self.settings.downloads_dir,
            deadline=deadline,
            policy=self.policy,
            sleep=self.sleep,
            fetch=self.fetch,
        )
        log("[PROCESS]", "Uploading files for model access")
        uploads = await upload_files(
            files,
            self.reasoning.upload,
            deadline=deadline,
            policy=self.upload_policy,
            sleep=self.sleep,
        )
        # only a fully acquired attempt gets its state; partial work is dropped
        attempt.content = content
        attempt.candidates = candidates
        attempt.files = files
        attempt.uploads = uploads

    async def extract_question(self, attempt: Attempt) -> str:
        prompt = prompts.question_prompt(attempt.content, attempt.filenames, attempt.last_error)
        question = (await self.reasoning.generate(prompt, context=attempt.uploads)).strip()
        log("[PHASE A]", "question extracted:", question)
        return question

    async def classify(self, attempt: Attempt) -> bool:
        prompt = prompts.classification_prompt(
            attempt.question, attempt.filenames, attempt.last_error
        )
        raw = await self.reasoning.generate(prompt, context=attempt.uploads, light=True)
        needs_code = prompts.parse_needs_code(raw)
        log("[PHASE B]", "needs_code =", needs_code)
        return needs_code

    async def solve_directly(self, attempt: Attempt) -> str:
        answer = await self.reasoning.generate(
            prompts.solve_prompt(attempt.question), context=attempt.uploads
        )
        log("[PHASE C]", "solved:", answer)
        return answer

    async def generate_code(self, attempt: Attempt) -> str:
        prompt = prompts.codegen_prompt(attempt.question, attempt.filenames, attempt.last_error)
        raw = await self.reasoning.generate(prompt, context=attempt.uploads)
        return validate_code(strip_fences(raw))

    async def compute(self, attempt: Attempt, deadline: Deadline) -> Any:
        """Generate-and-run loop; every failure goes back into the next prompt."""
        failures = 0
        while True:
            attempt.code = await self._retry(
                "CODEGEN", lambda: self.generate_code(attempt), attempt, deadline
            )
            deadline.check("code execution")
            try:
                result = await self.run_code(attempt.code, attempt.files,
                                             self.settings.downloads_dir)
            except Exception as e:
                failures += 1
                attempt.record_error(e)
                log("[EXEC ERROR]", "retrying...", describe_error(e))
                if self.policy.exhausted(failures):
                    raise RetryExhausted("EXEC", failures, e) from e
                await self.sleep(self.policy.delay_for(failures))
                continue
            log("[EXEC RESULT]", result)
            return result

    async def find_endpoint(self, task: Task, attempt: Attempt) -> str:
        content = attempt.content
        raw = await self.reasoning.generate(
            prompts.endpoint_prompt(task.target),
            extra=[content.text, content.html, "\n".join(content.links)],
            light=True,
        )
        endpoint = clean_endpoint(raw)
        log("[FIND SUBMISSION URL]", "found:", endpoint)
        return endpoint

    # ------------------------------------------------------------------
    # deadline path
    # ------------------------------------------------------------------

    async def find_degraded_endpoint(self, target: str) -> str:
        raw = await self.reasoning.generate(prompts.degraded_endpoint_prompt(target), light=True)
        endpoint = clean_endpoint(raw)
        log("[TIMEOUT]", "Extracted submission URL:", endpoint)
        return endpoint

    async def degraded_submit(self, task: Task, attempts: int = 0) -> TaskOutcome:
        """Send the placeholder answer once; chain if the response offers a URL."""
        log("[TIMEOUT]", "Global timeout exceeded. Sending placeholder answer...")
        policy = RetryPolicy(
            delay=self.settings.endpoint_retry_delay,
            max_attempts=self.settings.degraded_endpoint_attempts,
        )
        try:
            endpoint = await retry_until_deadline(
                "TIMEOUT",
                lambda: self.find_degraded_endpoint(task.target),
                deadline=None,
                policy=policy,
                sleep=self.sleep,
            )
        except RetryExhausted as e:
            log("[TIMEOUT]", "No submission URL available. Aborting timeout submit.",
                describe_error(e))
            return TaskOutcome("abandoned", attempts)

        payload = build_payload(self.settings.email, self.settings.secret, task.target,
                                self.settings.placeholder_answer)
        try:
            verdict = await self.submit(endpoint, payload)
        except Exception as e:
            log("[TIMEOUT ERROR]", "Failed to auto-submit placeholder:", describe_error(e))
            return TaskOutcome("abandoned", attempts)

        if verdict.next_url:
            self.chain(verdict.next_url)
            return TaskOutcome("abandoned", attempts, verdict, verdict.next_url)
        log("[TIMEOUT]", "No valid next URL in response. Returning.")
        return TaskOutcome("abandoned", attempts, verdict)


async def solve_task(url: str, supervisor) -> TaskOutcome:
    settings = supervisor.settings
    reasoning = ReasoningClient(settings.gemini_api_key, settings.model, settings.light_model)
    pipeline = Pipeline(settings, reasoning, chain=supervisor.chain)
    return await pipeline.run(url)
