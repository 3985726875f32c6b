# services/web2md/extractor.py
"""
Main-content extraction.

Strips non-content markup, scores the plausible content containers of a page
and keeps the best one (or the whole body when nothing scores well enough).
The returned ``ExtractedContent`` also carries the plain text, title and
structure counts that the quality gate later compares candidates against.
"""

import re
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Comment, Tag

from models.content import ExtractedContent, StructureStats

REMOVED_TAGS = [
    "script", "style", "noscript", "template", "iframe", "svg", "canvas",
    "nav", "aside", "form", "input", "button", "select", "textarea",
    "option", "dialog",
]
PAGE_CHROME_TAGS = ["header", "footer"]

POSITIVE_ATTR = re.compile(r"(article|post|entry|content|main|prose|markdown|blog|doc|readme)", re.I)
NEGATIVE_ATTR = re.compile(
    r"(nav|menu|footer|header|sidebar|social|share|comment|related|popup|modal|cookie|promo|advert"
    r"|(?:^|[\s_-])ads?(?:$|[\s_-]))",
    re.I,
)
NOISE_TEXT = re.compile(r"(sign up|log in|subscribe|cookie|privacy policy|all rights reserved)", re.I)
SENTENCE_END = re.compile(r"[.!?](?:\s|$)")
RAW_URL_PREFIX = re.compile(r"^(mailto|tel|javascript|data):", re.I)
EXCERPT_SENTENCE = re.compile(r"^(.{80,320}?[.!?])(?:\s|$)", re.S)

MIN_CANDIDATE_TEXT = 120
MIN_SELECTED_TEXT = 180
REJECTED_SCORE = -1_000_000.0


def collapse_whitespace(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def element_text(element: Tag) -> str:
    return collapse_whitespace(element.get_text(" "))


def _attr_signature(element: Tag) -> str:
    parts = []
    for value in element.attrs.values():
        if isinstance(value, (list, tuple)):
            parts.extend(str(item) for item in value)
        else:
            parts.append(str(value))
    return " ".join(parts)


# ----------------------------------------------------------------------
# Cleaning
# ----------------------------------------------------------------------
def _is_hidden(element: Tag) -> bool:
    if element.has_attr("hidden"):
        return True
    style = element.get("style", "")
    return bool(re.search(r"display\s*:\s*none", style or "", re.I))


def _strip_boilerplate(soup: BeautifulSoup) -> None:
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    for element in soup.find_all(REMOVED_TAGS):
        if not element.decomposed:
            element.decompose()

    for element in soup.find_all(PAGE_CHROME_TAGS):
        if element.decomposed:
            continue
        if element.find_parent(["article", "main"]) is None:
            element.decompose()

    for element in soup.find_all(_is_hidden):
        if not element.decomposed:
            element.decompose()


# ----------------------------------------------------------------------
# Candidate scoring
# ----------------------------------------------------------------------
def score_candidate(element: Tag) -> float:
    text = element_text(element)
    text_length = len(text)
    if text_length < MIN_CANDIDATE_TEXT:
        return REJECTED_SCORE

    paragraphs = len(element.find_all("p"))
    headings = len(element.find_all(["h1", "h2", "h3", "h4"]))
    sentences = len(SENTENCE_END.findall(text))
    link_length = sum(len(element_text(anchor)) for anchor in element.find_all("a"))
    link_density = link_length / text_length

    attrs = _attr_signature(element)
    score = (
        text_length
        + paragraphs * 60
        + headings * 40
        + sentences * 20
        - link_density * 460
    )
    if POSITIVE_ATTR.search(attrs):
        score += 180
    if NEGATIVE_ATTR.search(attrs):
        score -= 260
    if NOISE_TEXT.search(text):
        score -= 180
    return score


def _candidates(root: Tag) -> List[Tag]:
    found: List[Tag] = []
    found.extend(root.find_all("article"))
    found.extend(root.find_all("main"))
    for name in ("section", "div"):
        found.extend(
            element for element in root.find_all(name)
            if POSITIVE_ATTR.search(_attr_signature(element))
        )
    return found


def pick_content_root(soup: BeautifulSoup) -> Tag:
    body = soup.body or soup
    scored = [(score_candidate(element), element) for element in _candidates(body)]
    if scored:
        best_score, best = max(scored, key=lambda pair: pair[0])
        if best_score > REJECTED_SCORE and len(element_text(best)) >= MIN_SELECTED_TEXT:
            return best
    return body


# ----------------------------------------------------------------------
# Metadata and stats
# ----------------------------------------------------------------------
def _meta_content(soup: BeautifulSoup, key: str) -> Optional[str]:
    for attr in ("property", "name"):
        meta = soup.find("meta", attrs={attr: key})
        if meta and meta.get("content"):
            content = collapse_whitespace(meta["content"])
            if content:
                return content
    return None


def _first_text(root: Tag, name: str) -> Optional[str]:
    element = root.find(name)
    if element is None:
        return None
    return element_text(element) or None


def pick_title(soup: BeautifulSoup, selected: Tag) -> str:
    title = (
        _meta_content(soup, "og:title")
        or _meta_content(soup, "twitter:title")
        or _first_text(soup, "title")
        or _first_text(selected, "h1")
        or "Untitled"
    )
    return collapse_whitespace(title) or "Untitled"


def collect_structure(root: Tag) -> StructureStats:
    code_blocks = len(root.find_all("pre")) + sum(
        1 for code in root.find_all("code") if code.find_parent("pre") is None
    )
    return StructureStats(
        link_count=len(root.find_all("a", href=True)),
        list_item_count=len(root.find_all("li")),
        code_block_count=code_blocks,
        table_count=len(root.find_all("table")),
    )


def build_excerpt(text: str) -> Optional[str]:
    if not text:
        return None
    match = EXCERPT_SENTENCE.match(text)
    if match:
        return match.group(1)
    return f"{text[:220].rstrip()}..." if len(text) > 220 else text


def _keep_raw_url(value: str) -> bool:
    value = value.strip()
    return not value or value.startswith("#") or bool(RAW_URL_PREFIX.match(value))


def absolutize_urls(root: Tag, base_url: str) -> None:
    for attr in ("href", "src"):
        for element in root.find_all(attrs={attr: True}):
            value = element.get(attr)
            if not isinstance(value, str) or _keep_raw_url(value):
                continue
            try:
                element[attr] = urljoin(base_url, value.strip())
            except ValueError:
                continue


def _normalize_html(value: str) -> str:
    value = value.replace("\r\n", "\n")
    value = re.sub(r"[ \t]+\n", "\n", value)
    value = re.sub(r"\n{3,}", "\n\n", value)
    return value.strip()


def extract_main_content(html: str, source_url: str) -> ExtractedContent:
    soup = BeautifulSoup(html or "", "html.parser")
    _strip_boilerplate(soup)

    selected = pick_content_root(soup)
    absolutize_urls(selected, source_url)

    text = element_text(selected)
    return ExtractedContent(
        title=pick_title(soup, selected),
        html=_normalize_html(selected.decode_contents()),
        text=text,
        excerpt=build_excerpt(text),
        structure=collect_structure(selected),
    )
