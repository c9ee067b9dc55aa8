import base64
import binascii
import re
from typing import Awaitable, Callable, List, Optional, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from playwright.async_api import async_playwright

from solver.deadline import Deadline
from solver.files import candidate_files, is_file_url, is_page_url
from solver.models import AggregatedContent, PageSnapshot, describe_error, log

PAGE_TIMEOUT_MS = 120000
BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]

INNER_TEXT_JS = "() => document.body ? document.body.innerText : ''"
SHADOW_JS = """() => [...document.querySelectorAll('*')]
    .map((el) => (el.shadowRoot ? el.shadowRoot.innerHTML : null))
    .filter((x) => x)"""

ATOB_RE = re.compile(r'atob\s*\(\s*["\']([^"\']+)["\']\s*\)')

Renderer = Callable[[str], Awaitable[PageSnapshot]]


def _absolute(base_url, value):
    if not value:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return urljoin(base_url, value)
    except ValueError:
        return None


def _collect(soup, base_url, tag, attr):
    out = []
    for el in soup.find_all(tag):
        u = _absolute(base_url, el.get(attr))
        if u:
            out.append(u)
    return out


def decode_hidden(html):
    """Decode the payloads of inline ``atob("...")`` calls."""
    decoded = []
    for match in ATOB_RE.findall(html or ""):
        try:
            decoded.append(base64.b64decode(match, validate=True).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError):
            continue
    return decoded


def snapshot_from_html(html, url, title=None, text=None, shadow=None, network_files=None):
    soup = BeautifulSoup(html or "", "html.parser")
    if title is None:
        title = soup.title.get_text(strip=True) if soup.title else ""
    if text is None:
        text = soup.get_text(separator="\n", strip=True)
    hidden = decode_hidden(html)
    if hidden:
        text = (text or "") + "\n\n[DECODED BASE64 CONTENT]:\n" + "\n---\n".join(hidden)
    return PageSnapshot(
        title=title or "",
        url=url,
        text=text or "",
        html=html or "",
        links=_collect(soup, url, "a", "href"),
        audio=_collect(soup, url, "audio", "src"),
        video=_collect(soup, url, "video", "src"),
        images=_collect(soup, url, "img", "src"),
        sources=_collect(soup, url, "source", "src"),
        embeds=_collect(soup, url, "embed", "src"),
        objects=_collect(soup, url, "object", "data"),
        shadow=list(shadow or []),
        network_files=list(network_files or []),
    )


async def render_page(url: str) -> PageSnapshot:
    """Render ``url`` in headless Chromium and extract its content.

    Every response URL that looks like a file is recorded as well, which
    catches resources that never show up in the DOM (background fetches,
    scripted downloads).
    """
    network_files: List[str] = []

    def on_response(response):
        u = response.url
        if is_file_url(u) and u not in network_files:
            network_files.append(u)

    log("[SCRAPER]", "Launching browser")
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=True, args=BROWSER_ARGS)
        try:
            page = await browser.new_page()
            page.on("response", on_response)
            log("[SCRAPER]", "Navigating to:", url)
            await page.goto(url, wait_until="networkidle", timeout=PAGE_TIMEOUT_MS)
            log("[SCRAPER]", "Extracting DOM")
            html = await page.content()
            text = await page.evaluate(INNER_TEXT_JS)
            shadow = await page.evaluate(SHADOW_JS)
            title = await page.title()
            final_url = page.url
        finally:
            log("[SCRAPER]", "Closing browser")
            await browser.close()
    return snapshot_from_html(
        html, final_url, title=title, text=text, shadow=shadow, network_files=network_files
    )


def page_links(links):
    return list(dict.fromkeys(u for u in links if is_page_url(u)))


async def aggregate_content(
    url: str,
    *,
    render: Renderer = render_page,
    deadline: Optional[Deadline] = None,
) -> Tuple[AggregatedContent, List[str]]:
    """Render ``url`` plus every page it links to, one hop deep.

    Returns the merged content and the candidate file URLs found across all
    visited pages.
    """
    root = await render(url)
    content = AggregatedContent.from_snapshot(root)

    for page_url in page_links(root.links):
        if deadline is not None:
            deadline.check("linked page")
        try:
            log("[SCRAPE]", "Following HTML link:", page_url)
            sub = await render(page_url)
        except Exception as exc:
            log("[SCRAPE]", "Failed linked page:", page_url, describe_error(exc))
            continue
        content.merge(sub)

    candidates = candidate_files(content)
    log("[SCRAPE]", f"{len(candidates)} candidate file(s)")
    return content, candidates
