from __future__ import annotations

from dataclasses import dataclass, field
from typing import cast

from bs4 import BeautifulSoup, Tag

from bookmind.services.tag_normalizer import parse_tags


@dataclass
class ImportedBookmark:
    title: str
    url: str
    folder_path: list[str]
    tags: list[str] = field(default_factory=list)

    @property
    def all_tags(self) -> list[str]:
        return [*self.tags, *self.folder_path]


def _iter_dt_entries(dl: Tag) -> list[Tag]:
    entries: list[Tag] = []
    for dt in dl.find_all("dt"):
        if not isinstance(dt, Tag):
            continue
        if dt.find_parent("dl") is dl:
            entries.append(cast(Tag, dt))
    return entries


def _find_nested_dl(dt: Tag) -> Tag | None:
    nested = dt.find("dl")
    if isinstance(nested, Tag):
        return nested

    sibling = dt.next_sibling
    while sibling is not None:
        if isinstance(sibling, Tag):
            name = (sibling.name or "").lower()
            if name == "dl":
                return sibling
            if name == "dt":
                return None
        sibling = sibling.next_sibling
    return None


def _direct_child(dt: Tag, names) -> Tag | None:
    for node in dt.find_all(names):
        if isinstance(node, Tag) and node.find_parent("dt") is dt:
            return node
    return None


def _anchor_tags(anchor: Tag) -> list[str]:
    raw = anchor.get("tags")
    if isinstance(raw, list):
        raw = ",".join(raw)
    return parse_tags(raw or "")


def _parse_dl(dl: Tag, folder_path: list[str], out: list[ImportedBookmark]) -> None:
    for dt in _iter_dt_entries(dl):
        anchor = _direct_child(dt, "a")
        href = ""
        if anchor is not None:
            href_value = anchor.get("href")
            href = href_value.strip() if isinstance(href_value, str) else ""

        if href and href.lower().startswith(("http://", "https://")):
            out.append(
                ImportedBookmark(
                    title=anchor.get_text(strip=True),
                    url=href,
                    folder_path=folder_path.copy(),
                    tags=_anchor_tags(anchor),
                )
            )

        nested_dl = _find_nested_dl(dt)
        folder = _direct_child(dt, ["h3", "h2", "h1"])
        if folder is None and nested_dl is not None:
            folder = dt.find(["h3", "h2", "h1"])

        if isinstance(folder, Tag) and nested_dl is not None:
            name = folder.get_text(strip=True)
            _parse_dl(nested_dl, folder_path + [name] if name else folder_path, out)


def parse_bookmark_html(html: str) -> list[ImportedBookmark]:
    """Flatten a Netscape bookmark export into entries with their folder path."""
    soup = BeautifulSoup(html, "lxml")
    root = soup.find("dl")
    if not isinstance(root, Tag):
        return []

    bookmarks: list[ImportedBookmark] = []
    _parse_dl(root, [], bookmarks)
    return bookmarks
