"""
Browser helpers shared by the scraping pipelines.

Wraps the Playwright launch and the frame traversal both portals need: the
Incolink portal renders its search box and member tables inside nested
frames, so lookups walk every frame of the page instead of just the top one.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterator, List, Optional, Sequence

from playwright.sync_api import sync_playwright, Browser, ElementHandle, Frame, Page

from scraper_worker.config import WorkerSettings
from scraper_worker.utils import truncate_for_log

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/119 Safari/537.36"
)
LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"]


@dataclass
class FailureContext:
    """Where a scrape was, and what the page looked like, when it went wrong."""

    stage: str
    query: Optional[str]
    page_url: str
    page_title: str
    html_sample: str
    error_message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@contextmanager
def open_browser(settings: WorkerSettings) -> Iterator[Browser]:
    """
    Launch a headless Chromium for the duration of one job.

    Args:
        settings: Worker settings (headless flag, optional Chrome binary)

    Yields:
        Playwright Browser, closed on exit
    """
    with sync_playwright() as p:
        logger.info("Launching browser...")
        browser = p.chromium.launch(
            headless=settings.headless,
            args=LAUNCH_ARGS,
            executable_path=settings.chrome_path or None,
        )
        try:
            yield browser
        finally:
            browser.close()
            logger.info("Browser closed")


def new_page(browser: Browser, navigation_timeout_ms: int = 60000) -> Page:
    """Open a fresh page in its own context with the worker's user agent."""
    context = browser.new_context(
        user_agent=USER_AGENT,
        viewport={'width': 1920, 'height': 1080},
    )
    page = context.new_page()
    page.set_default_navigation_timeout(navigation_timeout_ms)
    return page


def close_page(page: Page) -> None:
    """Close a page and its context, ignoring pages that are already gone."""
    try:
        context = page.context
        page.close()
        context.close()
    except Exception as e:
        logger.debug(f"Page already closed: {e}")


def iter_frames(page: Page) -> Iterator[Frame]:
    """Yield the page's main frame followed by every nested frame."""
    for frame in page.frames:
        yield frame


def query_any_frame(page: Page, selectors: Sequence[str]) -> Optional[ElementHandle]:
    """
    Find the first element matching any selector in any frame.

    Frames are walked in document order; within a frame the selectors are
    tried in the order given.

    Args:
        page: Playwright page
        selectors: CSS selectors to try

    Returns:
        First matching ElementHandle, or None
    """
    for frame in iter_frames(page):
        for selector in selectors:
            try:
                element = frame.query_selector(selector)
            except Exception as e:
                # Frames detach while the portal navigates
                logger.debug(f"Selector {selector!r} failed in frame {frame.url}: {e}")
                continue
            if element:
                return element
    return None


def wait_for_any_frame(
    page: Page,
    selectors: Sequence[str],
    timeout_ms: int = 30000,
    poll_ms: int = 250,
) -> ElementHandle:
    """
    Poll every frame until one of the selectors matches.

    Raises:
        TimeoutError: If nothing matches within timeout_ms
    """
    deadline = time.monotonic() + timeout_ms / 1000
    while True:
        element = query_any_frame(page, selectors)
        if element:
            return element
        if time.monotonic() >= deadline:
            raise TimeoutError(f"Timeout waiting for selectors: {', '.join(selectors)}")
        time.sleep(poll_ms / 1000)


def collect_from_frames(page: Page, selector: str, script: str) -> List[Any]:
    """
    Run `script` over all elements matching `selector` in every frame.

    The script receives the matched elements and must return a list; the
    lists from all frames are concatenated. A frame that errors (detached,
    cross-origin) contributes nothing.

    Args:
        page: Playwright page
        selector: CSS selector evaluated in each frame
        script: JavaScript function `(elements) => [...]`

    Returns:
        Combined results across frames
    """
    results: List[Any] = []
    for frame in iter_frames(page):
        try:
            values = frame.eval_on_selector_all(selector, script)
        except Exception as e:
            logger.debug(f"Could not read {selector!r} from frame {frame.url}: {e}")
            continue
        if values:
            results.extend(values)
    return results


def page_diagnostics(page: Page, stage: str, query: Optional[str], error: Any) -> FailureContext:
    """
    Capture the page's URL, title and a slice of its HTML for an error event.

    Never raises; missing pieces are reported as "unknown" / empty.
    """
    try:
        page_url = page.url
    except Exception:
        page_url = "unknown"

    try:
        page_title = page.title()
    except Exception:
        page_title = "unknown"

    try:
        html_sample = truncate_for_log(page.content())
    except Exception:
        html_sample = ""

    return FailureContext(
        stage=stage,
        query=query,
        page_url=page_url,
        page_title=page_title,
        html_sample=html_sample,
        error_message=str(error),
    )
