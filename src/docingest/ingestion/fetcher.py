"""
HTTP page fetcher built on httpx.

Fetches a single page and reduces its HTML to plain text. Rendering
JavaScript-heavy pages is out of reach for this fetcher; anything that
needs a browser should implement the ``Fetcher`` protocol itself.
"""

import html
import logging
import re
import time
from typing import Dict, List, Optional
from urllib.parse import urljoin, urlsplit

import httpx

from ..core.errors import ErrorSeverity, ScrapingError
from .collaborators import FetchedPage, FetchOptions, PageMetadata

logger = logging.getLogger(__name__)

USER_AGENT = "docingest/1.0 (+https://github.com/docingest/docingest)"

RETRYABLE_STATUS = {408, 429}
FORBIDDEN_STATUS = {401, 403}

_TITLE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_DESCRIPTION = re.compile(
    r"<meta\s+name=[\"']description[\"']\s+content=[\"'](.*?)[\"']", re.IGNORECASE
)
_LANG = re.compile(r"<html[^>]*\slang=[\"']([\w-]+)[\"']", re.IGNORECASE)
_DROP_BLOCKS = re.compile(
    r"<(script|style|noscript|template)\b[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL
)
_HEADING = re.compile(r"<h([1-6])[^>]*>(.*?)</h\1>", re.IGNORECASE | re.DOTALL)
_BLOCK_BREAK = re.compile(r"</?(p|div|section|article|li|ul|ol|br|tr|table|pre|blockquote)\b[^>]*>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")
_HREF = re.compile(r"<a\s[^>]*href=[\"']([^\"'#]+)[\"']", re.IGNORECASE)


class HttpPageFetcher:
    """Fetch and extract text from HTML pages over HTTP(S)."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        user_agent: str = USER_AGENT,
    ):
        self._client = client
        self.session_headers = {
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml,text/plain;q=0.9,*/*;q=0.8",
        }
        self._robots_cache: Dict[str, List[str]] = {}

    async def fetch(self, url: str, options: FetchOptions) -> FetchedPage:
        use_internal_client = self._client is None
        client = self._client or httpx.AsyncClient(
            timeout=httpx.Timeout(options.timeout, connect=10.0),
            headers=self.session_headers,
            follow_redirects=True,
        )
        start_time = time.time()

        try:
            if options.respect_robots and not await self._allowed_by_robots(client, url):
                raise ScrapingError(
                    f"Fetching {url} is disallowed by robots.txt",
                    retryable=False,
                    severity=ErrorSeverity.LOW,
                )

            response = await client.get(url, timeout=options.timeout)
            self._raise_for_status(url, response)

            page = self._extract(str(response.url), response.text, response.headers)
            logger.info(
                f"Fetched {url}: {len(page.content)} chars, {len(page.links)} links "
                f"in {time.time() - start_time:.2f}s"
            )
            return page

        except ScrapingError:
            raise
        except httpx.TimeoutException as e:
            raise ScrapingError(f"Timeout fetching {url}: {e}", retryable=True, cause=e) from e
        except httpx.TransportError as e:
            raise ScrapingError(f"Network error fetching {url}: {e}", retryable=True, cause=e) from e
        finally:
            if use_internal_client:
                await client.aclose()

    def _raise_for_status(self, url: str, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        message = f"HTTP {status} fetching {url}"
        if status in FORBIDDEN_STATUS:
            raise ScrapingError(message, retryable=False, status_code=status)
        if status in RETRYABLE_STATUS or status >= 500:
            raise ScrapingError(message, retryable=True, status_code=status)
        raise ScrapingError(message, retryable=False, severity=ErrorSeverity.LOW, status_code=status)

    def _extract(self, url: str, body: str, headers: httpx.Headers) -> FetchedPage:
        content_type = headers.get("content-type", "")
        if "html" not in content_type and not body.lstrip().startswith("<"):
            title = urlsplit(url).path.rsplit("/", 1)[-1] or url
            return FetchedPage(url, title, body, PageMetadata(url=url, title=title))

        title_match = _TITLE.search(body)
        title = html.unescape(title_match.group(1).strip()) if title_match else url
        description_match = _DESCRIPTION.search(body)
        lang_match = _LANG.search(body)

        links = []
        for href in _HREF.findall(body):
            absolute = urljoin(url, href.strip())
            if absolute.startswith(("http://", "https://")) and absolute not in links:
                links.append(absolute)

        metadata = PageMetadata(
            url=url,
            title=title,
            description=html.unescape(description_match.group(1)) if description_match else None,
            language=lang_match.group(1) if lang_match else None,
        )
        return FetchedPage(url, title, html_to_text(body), metadata, links)

    async def _allowed_by_robots(self, client: httpx.AsyncClient, url: str) -> bool:
        parts = urlsplit(url)
        origin = f"{parts.scheme}://{parts.netloc}"

        if origin not in self._robots_cache:
            disallowed: List[str] = []
            try:
                response = await client.get(f"{origin}/robots.txt")
                if response.status_code == 200:
                    disallowed = parse_robots_disallow(response.text)
            except httpx.HTTPError as e:
                logger.debug(f"Could not read robots.txt for {origin}: {e}")
            self._robots_cache[origin] = disallowed

        path = parts.path or "/"
        return not any(path.startswith(prefix) for prefix in self._robots_cache[origin])


def parse_robots_disallow(robots_txt: str) -> List[str]:
    """Disallow prefixes that apply to every user agent (``User-agent: *``)."""
    disallowed = []
    applies = False
    for raw_line in robots_txt.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue
        key, value = (part.strip() for part in line.split(":", 1))
        key = key.lower()
        if key == "user-agent":
            applies = value == "*"
        elif key == "disallow" and applies and value:
            disallowed.append(value)
    return disallowed


def html_to_text(body: str) -> str:
    """Strip markup, keeping headings as markdown so the chunker sees structure."""
    text = _DROP_BLOCKS.sub(" ", body)
    text = _HEADING.sub(lambda m: f"\n{'#' * int(m.group(1))} {_TAG.sub('', m.group(2)).strip()}\n", text)
    text = _BLOCK_BREAK.sub("\n", text)
    text = _TAG.sub(" ", text)
    text = html.unescape(text)
    lines = [" ".join(line.split()) for line in text.splitlines()]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()
