"""
Playwright binding between a signed-in Gemini tab and the forker.

:class:`BrowserSession` wraps a Playwright (sync API) page and provides the
collaborators the core needs:

- traffic observation: every POST the page makes is fed to
  :meth:`CredentialCache.observe`;
- the embedded token, read from ``window.WIZ_global_data``;
- the current page HTML for the transcript extractor;
- cookies for the ``requests`` session used by the client;
- navigation to the new conversation.

Playwright's sync API only dispatches page events while a Playwright call is
in progress, so waits here go through ``page.wait_for_timeout`` rather than
``time.sleep``.

Typical usage::

    with attach_over_cdp("http://localhost:9222") as browser:
        browser.prime()
        orchestrator = browser.build_orchestrator()
        result = orchestrator.fork(ForkRequest(anchor=-1, retain_percent=70))
"""

import logging
from contextlib import contextmanager
from typing import Any, Generator, Optional

import requests

from .client import GeminiWebClient
from .config import EMBEDDED_TOKEN_RETRY_DELAY, GEMINI_BASE_URL
from .constants import EMBEDDED_TOKEN_GLOBAL, EMBEDDED_TOKEN_KEY
from .credentials import CredentialCache
from .orchestrator import ForkOrchestrator, detect_gem_id
from .transcript import TranscriptExtractor

logger = logging.getLogger(__name__)

_EMBEDDED_TOKEN_JS = (
    f"() => (window.{EMBEDDED_TOKEN_GLOBAL} && window.{EMBEDDED_TOKEN_GLOBAL}.{EMBEDDED_TOKEN_KEY}) || null"
)


class BrowserSession:
    """Feeds a live Gemini page into a credential cache and builds the forker.

    Parameters
    ----------
    page : playwright.sync_api.Page
        A page on the Gemini web app, already signed in.
    credentials : CredentialCache, optional
        Cache to populate.  A new one reading from this page is created if
        omitted.
    """

    def __init__(self, page: Any, credentials: Optional[CredentialCache] = None):
        self.page = page
        self.credentials = credentials or CredentialCache(
            embedded_token_source=self.read_embedded_token
        )
        page.on("request", self._on_request)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def _on_request(self, request: Any) -> None:
        if request.method != "POST":
            return
        try:
            body = request.post_data
        except UnicodeDecodeError:
            return
        self.credentials.observe(request.url, body)

    def read_embedded_token(self) -> Optional[str]:
        return self.page.evaluate(_EMBEDDED_TOKEN_JS)

    def prime(self, reload: bool = True, retry_delay: Optional[float] = None) -> None:
        """Collect credentials from page load.

        Reloading makes the page issue its start-up batchexecute calls, which
        carry the signing token.  The embedded token is read once right away
        and once more after ``retry_delay`` seconds.
        """
        if reload:
            self.page.reload(wait_until="networkidle")
        self.credentials.refresh_embedded()
        delay = EMBEDDED_TOKEN_RETRY_DELAY if retry_delay is None else retry_delay
        self.wait(delay)
        self.credentials.refresh_embedded()
        logger.info("Credential readiness after priming: %s", self.credentials.is_ready().to_dict())

    def wait(self, seconds: float) -> None:
        self.page.wait_for_timeout(seconds * 1000)

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    @property
    def url(self) -> str:
        return self.page.url

    def html(self) -> str:
        return self.page.content()

    def navigate(self, url: str) -> None:
        self.page.goto(url)

    def detect_gem_id(self) -> Optional[str]:
        return detect_gem_id(self.url)

    def export_cookies(self, session: requests.Session) -> int:
        """Copy the browser context's cookies into a ``requests`` session."""
        cookies = self.page.context.cookies()
        for cookie in cookies:
            session.cookies.set(
                cookie["name"],
                cookie["value"],
                domain=cookie.get("domain", ""),
                path=cookie.get("path", "/"),
            )
        return len(cookies)

    def build_client(self, base_url: Optional[str] = None) -> GeminiWebClient:
        session = requests.Session()
        session.headers.update({"User-Agent": self.page.evaluate("() => navigator.userAgent")})
        count = self.export_cookies(session)
        logger.info("Copied %d browser cookies into the HTTP session", count)
        return GeminiWebClient(self.credentials, base_url=base_url or GEMINI_BASE_URL, session=session)

    def build_orchestrator(self, navigate: bool = True, **kwargs: Any) -> ForkOrchestrator:
        return ForkOrchestrator(
            client=self.build_client(),
            extractor=TranscriptExtractor(self.html),
            navigate_fn=self.navigate if navigate else None,
            sleep_fn=self.wait,
            **kwargs,
        )


@contextmanager
def attach_over_cdp(
    cdp_url: str, base_url: Optional[str] = None
) -> Generator[BrowserSession, None, None]:
    """Attach to a running Chrome over CDP and bind its Gemini tab.

    Uses the first open tab on the Gemini origin, or opens one.
    """
    from playwright.sync_api import sync_playwright

    origin = (base_url or GEMINI_BASE_URL).rstrip("/")
    with sync_playwright() as pw:
        browser = pw.chromium.connect_over_cdp(cdp_url)
        try:
            context = browser.contexts[0] if browser.contexts else browser.new_context()
            page = next((p for p in context.pages if p.url.startswith(origin)), None)
            if page is None:
                page = context.new_page()
                page.goto(f"{origin}/app")
            logger.info("Attached to %s", page.url)
            yield BrowserSession(page)
        finally:
            browser.close()
