from __future__ import annotations

import re
import warnings
from dataclasses import dataclass

import httpx
import trafilatura
from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning


DEFAULT_HEADERS = {
    "User-Agent": "BookmindBot/1.0 (+https://bookmind.local)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

FETCH_STATUS_OK = "ok"
FETCH_STATUS_TIMEOUT = "timeout"
FETCH_STATUS_NOT_FOUND = "not_found"
FETCH_STATUS_SERVER_ERROR = "server_error"
FETCH_STATUS_UNREACHABLE = "unreachable"

TRANSIENT_FETCH_RESULTS = {
    FETCH_STATUS_TIMEOUT,
    FETCH_STATUS_UNREACHABLE,
    FETCH_STATUS_SERVER_ERROR,
}

MAX_CONTENT_CHARS = 200000
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class PageMetadata:
    title: str | None
    description: str | None
    content: str
    status: str
    error: str | None = None
    final_url: str | None = None


def _normalize_error(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return exc.__class__.__name__


def fetch_html(url: str, timeout: float, max_bytes: int) -> tuple[str, str, int]:
    with httpx.Client(
        follow_redirects=True, timeout=timeout, headers=DEFAULT_HEADERS
    ) as client:
        with client.stream("GET", url) as response:
            status_code = response.status_code
            chunks = []
            total = 0
            for chunk in response.iter_bytes():
                total += len(chunk)
                if total > max_bytes:
                    break
                chunks.append(chunk)
            data = b"".join(chunks)
            encoding = response.encoding or "utf-8"
            return (
                data.decode(encoding, errors="ignore"),
                str(response.url),
                status_code,
            )


def _build_soup(html: str) -> BeautifulSoup:
    if _looks_like_xml(html):
        return BeautifulSoup(html, "xml")
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
        return BeautifulSoup(html, "lxml")


def _looks_like_xml(html: str) -> bool:
    leading = html.lstrip()[:200].lower()
    return (
        leading.startswith("<?xml")
        or leading.startswith("<rss")
        or leading.startswith("<feed")
    )


def _meta_description(soup: BeautifulSoup) -> str | None:
    for attrs in ({"name": "description"}, {"property": "og:description"}):
        tag = soup.find("meta", attrs=attrs)
        if tag and tag.get("content"):
            return str(tag["content"]).strip() or None
    return None


def extract_from_html(html: str) -> tuple[str | None, str | None, str]:
    title = None
    description = None
    text = ""

    extracted = trafilatura.extract(
        html,
        include_comments=False,
        include_tables=False,
        favor_precision=True,
        no_fallback=False,
    )
    if extracted:
        text = extracted
    meta = trafilatura.extract_metadata(html)
    if meta is not None:
        title = (meta.title or "").strip() or None
        description = (meta.description or "").strip() or None

    if not text or not title or not description:
        soup = _build_soup(html)
        if not title and soup.title and soup.title.string:
            title = soup.title.string.strip()
        if not description:
            description = _meta_description(soup)
        if not text:
            text = "\n".join(part.strip() for part in soup.stripped_strings)

    return title, description, text[:MAX_CONTENT_CHARS]


def html_to_text(content: str | None) -> str:
    """Reduce stored page content to plain text suitable for the AI provider."""
    if not content:
        return ""
    if "<" not in content or ">" not in content:
        return _WHITESPACE_RE.sub(" ", content).strip()
    soup = _build_soup(content)
    for node in soup(["script", "style", "nav", "header", "footer", "aside", "form"]):
        node.decompose()
    return _WHITESPACE_RE.sub(" ", soup.get_text(" ")).strip()


def classify_status(status_code: int | None, error: str | None) -> str:
    if error:
        lower = error.lower()
        if "timed out" in lower or "timeout" in lower:
            return FETCH_STATUS_TIMEOUT
        return FETCH_STATUS_UNREACHABLE

    if status_code is None:
        return FETCH_STATUS_UNREACHABLE
    if status_code in {404, 410}:
        return FETCH_STATUS_NOT_FOUND
    if status_code == 408:
        return FETCH_STATUS_TIMEOUT
    if status_code >= 500:
        return FETCH_STATUS_SERVER_ERROR
    if 200 <= status_code < 400:
        return FETCH_STATUS_OK
    return FETCH_STATUS_UNREACHABLE


def extract_metadata(url: str, timeout: float, max_bytes: int) -> PageMetadata:
    """Best-effort page metadata; failures come back as an empty result."""
    attempts = 2
    for attempt in range(1, attempts + 1):
        try:
            html, final_url, status_code = fetch_html(
                url,
                timeout=timeout * (1 + (attempt - 1) * 0.5),
                max_bytes=max_bytes,
            )
            status = classify_status(status_code, None)
            if status == FETCH_STATUS_OK:
                title, description, text = extract_from_html(html)
            else:
                title, description, text = None, None, ""
            return PageMetadata(
                title=title,
                description=description,
                content=text,
                status=status,
                final_url=final_url,
            )
        except Exception as exc:
            error = _normalize_error(exc)
            status = classify_status(None, error)
            if attempt < attempts and status in TRANSIENT_FETCH_RESULTS:
                continue
            return PageMetadata(
                title=None, description=None, content="", status=status, error=error
            )

    return PageMetadata(
        title=None,
        description=None,
        content="",
        status=FETCH_STATUS_UNREACHABLE,
        error="Unable to fetch content.",
    )
