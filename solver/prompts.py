"""Prompt builders for every call made to the reasoning service."""
from urllib.parse import urlparse

from solver.models import AggregatedContent, describe_error

ERROR_LIMIT = 1000


def _files_block(filenames, label="FILES AVAILABLE"):
    return f"{label}:\n" + ("\n".join(filenames) if filenames else "NONE")


def _error_text(last_error):
    return describe_error(last_error)[:ERROR_LIMIT]


def origin_of(url):
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


QUESTION_RULES = """
You are given a webpage with its full content, including text, HTML, links, attachments (audio, CSV, or other files), and optionally an example submission JSON. Your task is to extract the *actual question* being asked.

**Task Objective**: Produce a single, precise natural-language question that a human could understand without any additional context. The output must be deterministic: for the same input, your answer must always be the same.

**Rules**:

1. **Ignore Submission JSON Structure**:
- The JSON shown on the page is only for submission. Do **not** reproduce it.
- You *may* use the value in the 'answer' field as a hint toward the actual question.

2. **Include Attachments in Understanding**:
- If there is an audio file, fully transcribe it and use it to reconstruct the question.
- If there is a CSV, spreadsheet, or other dataset, use it *only* to infer what the question is asking. Do **not** include raw data in your output.

3. **Answer Integration**:
- If the page itself provides the exact answer, include it using this format: "What is X? (Answer: Y) No need of code"
- If the answer is not explicit, do not guess it.
- Always include "No need of code" when the question can be answered without executing any computation, parsing, or aggregation.

4. **Absolute URLs**: convert relative URLs to absolute URLs using the main page's URL.

5. **Clarity**: the output must be self-contained and grammatically correct. No placeholders like '[link]' or '[data]'.

6. If no concrete question can be found, return: no question found

7. Only output the question (with answer if available). No notes, reasoning, or commentary.
"""

CLASSIFY_RULES = """
Task: Determine whether answering the given question requires executing code or programmatic computation (numeric computation, aggregation, filtering, parsing data files).

Output ONLY one value: true or false.

Rules:
- Output true if the question requires programmatic computation, applying operations to a dataset, automatically parsing a file, or calculations that cannot be solved reliably by hand.
- Scraping or extracting page content is NOT programmatic computation. All content is already provided.
- Output false if the question can be answered by reading text, listening to audio, interpreting an image, or looking up information in the provided context.
- Simple retrievals or lookups from a file do NOT require code.
- Output ONLY true or false, in lowercase letters. No explanation.
"""

SOLVE_RULES = (
    "Provide ONLY the final answer. Do not include explanations, reasoning, JSON, code, "
    "or any extra text. Output a single value exactly as required by the question."
)

CODEGEN_RULES = """
Generate Python code only. The code must begin exactly with:
def solve(files):
(or `async def solve(files):` if you need await)

Requirements:
- Return the answer as a plain Python value (str, int, float, bool, list or dict) from solve.
- If the answer is a chart, build it with plt and return the matplotlib Figure object itself.
- Do not print or log anything.
- Do not output markdown, comments, explanations, or any text outside valid Python code.
- Put every import inside the function. Only the standard library, pandas and pdfplumber are available.
- Never use the network, subprocesses, or write files. Only read the files you are given.
- files is a read-only mapping where keys are filenames and values are absolute file paths.
- All computation must be deterministic and fully executed within this function.
"""

ENDPOINT_RULES = """
Task: Extract the submission URL from the provided page contents.

Requirements:
- Respond with only the full absolute URL. Do NOT include JSON, markdown, or any extra text.
- If the page provides a relative link (e.g., /submit), resolve it against the base URL {base}.
- Always prioritize the first valid submission link found in the page content.
- Do not infer or guess URLs; extract only what is explicitly present in the page content.

Output: Only the full absolute URL as plain text.
"""

DEGRADED_ENDPOINT_RULES = """
Task: Extract the submission URL for the challenge page {target}.

Requirements:
- Respond with only the full absolute URL.
- If the page provides a relative link (e.g., /submit), resolve it against {base}.
- The output must be deterministic.
"""


def question_prompt(content: AggregatedContent, filenames, last_error=None):
    lines = [
        "SCRAPED PAGE URL: " + content.url,
        "PAGE TITLE: " + (content.title or ""),
        "PAGE TEXT:\n" + (content.text or ""),
        "PAGE HTML:\n" + (content.html or ""),
        "LINKS:\n" + "\n".join(content.links),
        "AUDIO LINKS:\n" + "\n".join(content.audio),
        "VIDEO LINKS:\n" + "\n".join(content.video),
        "IMG/SOURCE/EMBED/OBJECT LINKS:\n" + "\n".join(content.media_refs()),
        "SHADOW DOM CONTENTS:\n" + "\n\n".join(content.shadow),
        _files_block(filenames),
    ]
    if last_error:
        lines.append("Previous attempt failed with error: " + _error_text(last_error))
    lines.append(QUESTION_RULES)
    return "\n\n".join(lines)


def classification_prompt(question, filenames, last_error=None):
    lines = ["QUESTION:\n" + question, _files_block(filenames)]
    if last_error:
        lines.append("Previous attempt failed with error: " + _error_text(last_error))
    lines.append(CLASSIFY_RULES)
    return "\n\n".join(lines)


def solve_prompt(question):
    return "\n\n".join(["QUESTION:\n" + question, SOLVE_RULES])


def codegen_prompt(question, filenames, last_error=None):
    lines = ["QUESTION:\n" + question]
    if last_error:
        lines.append("Previous failure: " + _error_text(last_error))
    lines.append(_files_block(filenames, label="FILES_AVAILABLE"))
    lines.append(CODEGEN_RULES)
    return "\n\n".join(lines)


def endpoint_prompt(target):
    return ENDPOINT_RULES.format(base=origin_of(target))


def degraded_endpoint_prompt(target):
    return DEGRADED_ENDPOINT_RULES.format(target=target, base=origin_of(target))


def parse_needs_code(raw):
    # Exact lowercase literal only; "True", "yes" or an explanation all mean no.
    return raw == "true"
