# services/web2md/converter.py
"""
HTML → markdown transcription.

``MarkdownConverter`` walks the BeautifulSoup tree recursively and renders
each tag it knows about; unknown inline tags pass their children through and
unknown block tags become paragraph-separated blocks.  Block output is
wrapped in blank lines and the final string goes through
``normalize_markdown`` so spacing is stable.
"""

import re
from typing import Callable, Dict, List, Optional

from bs4 import BeautifulSoup, Tag
from bs4.element import Comment, Declaration, Doctype, NavigableString, ProcessingInstruction

from .markdown_utils import has_heading, normalize_markdown

SKIPPED_TAGS = {
    "script", "style", "noscript", "template", "iframe", "svg", "canvas",
    "head", "title", "meta", "link", "button", "input", "select", "option",
    "textarea", "object", "embed", "map", "audio", "video", "source", "track",
}
BLOCK_TAGS = {
    "html", "body", "div", "section", "article", "main", "header", "footer",
    "aside", "nav", "address", "center", "fieldset", "form", "hgroup",
    "figcaption", "caption", "dl",
}
SKIPPED_STRINGS = (Comment, Declaration, Doctype, ProcessingInstruction)

_WHITESPACE = re.compile(r"\s+")
_LANGUAGE_CLASS = re.compile(r"^(?:language|lang)-(.+)$")
_BACKTICK_RUN = re.compile(r"`+")
_FENCE_LINE = re.compile(r"^(`{3,})(.*)$")


def _collapse(value: str) -> str:
    return _WHITESPACE.sub(" ", value).strip()


def _block(content: str) -> str:
    content = content.strip("\n")
    return f"\n\n{content}\n\n" if content.strip() else ""


def _wrap(text: str, mark: str) -> str:
    stripped = text.strip()
    if not stripped:
        return " " if text else ""
    lead = " " if text[:1].isspace() else ""
    trail = " " if text[-1:].isspace() else ""
    return f"{lead}{mark}{stripped}{mark}{trail}"


class MarkdownConverter:
    def __init__(self):
        self._handlers: Dict[str, Callable[[Tag], str]] = {
            "p": self._paragraph,
            "br": lambda node: "\n",
            "hr": lambda node: "\n\n---\n\n",
            "strong": self._strong,
            "b": self._strong,
            "em": self._emphasis,
            "i": self._emphasis,
            "del": self._strike,
            "s": self._strike,
            "strike": self._strike,
            "code": self._inline_code,
            "pre": self._pre,
            "a": self._link,
            "img": self._image,
            "ul": lambda node: self._list(node, ordered=False),
            "ol": lambda node: self._list(node, ordered=True),
            "blockquote": self._blockquote,
            "table": self._table,
            "figure": self._figure,
            "details": self._details,
            "dt": self._term,
            "dd": lambda node: _block(self._children(node).strip()),
        }
        for level in range(1, 7):
            self._handlers[f"h{level}"] = self._heading

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def convert(self, html: str) -> str:
        soup = BeautifulSoup(html or "", "html.parser")
        return self._finish(self._children(soup))

    @staticmethod
    def _finish(markdown: str) -> str:
        lines: List[str] = []
        fence: Optional[str] = None
        for line in markdown.replace("\r\n", "\n").split("\n"):
            match = _FENCE_LINE.match(line.lstrip())
            if fence is None and match:
                fence = match.group(1)
            elif fence is not None:
                # only a bare fence at least as long as the opener closes the block
                if match and len(match.group(1)) >= len(fence) and not match.group(2).strip():
                    fence = None
            else:
                # collapsed inline whitespace can leave one stray leading space
                line = re.sub(r"^ (?=\S)", "", line)
            lines.append(line)
        return normalize_markdown("\n".join(lines))

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------
    def _render(self, node) -> str:
        if isinstance(node, SKIPPED_STRINGS):
            return ""
        if isinstance(node, NavigableString):
            return _WHITESPACE.sub(" ", str(node))
        if not isinstance(node, Tag):
            return ""

        name = (node.name or "").lower()
        if name in SKIPPED_TAGS:
            return ""
        handler = self._handlers.get(name)
        if handler is not None:
            return handler(node)
        if name in BLOCK_TAGS:
            return _block(self._children(node))
        return self._children(node)

    def _children(self, node: Tag) -> str:
        return "".join(self._render(child) for child in node.children)

    # ------------------------------------------------------------------
    # Block elements
    # ------------------------------------------------------------------
    def _heading(self, node: Tag) -> str:
        text = _collapse(self._children(node))
        if not text:
            return ""
        return _block(f"{'#' * int(node.name[1])} {text}")

    def _paragraph(self, node: Tag) -> str:
        lines = [line.strip() for line in self._children(node).split("\n")]
        return _block("\n".join(lines).strip())

    def _pre(self, node: Tag) -> str:
        code = node.find("code")
        body = (code or node).get_text().replace("\r\n", "\n").strip("\n")
        language = self._language(code) or self._language(node) or ""

        longest = max((len(run) for run in _BACKTICK_RUN.findall(body)), default=0)
        fence = "`" * max(3, longest + 1)
        return f"\n\n{fence}{language}\n{body}\n{fence}\n\n"

    @staticmethod
    def _language(node: Optional[Tag]) -> Optional[str]:
        if node is None:
            return None
        for cls in node.get("class") or []:
            match = _LANGUAGE_CLASS.match(cls)
            if match:
                return match.group(1)
        return None

    def _list(self, node: Tag, ordered: bool) -> str:
        items = [child for child in node.children if isinstance(child, Tag) and child.name == "li"]
        if not items:
            return _block(self._children(node))

        try:
            start = int(node.get("start", 1))
        except (TypeError, ValueError):
            start = 1

        rendered = []
        for index, item in enumerate(items):
            marker = f"{start + index}." if ordered else "-"
            body = self._children(item).strip()
            body = re.sub(r"\n\s*\n+", "\n", body)
            lines = [line.rstrip() for line in body.split("\n")] if body else [""]
            indent = " " * (len(marker) + 1)
            first = lines[0].strip()
            rest = [f"{indent}{line}" if line.strip() else "" for line in lines[1:]]
            rendered.append("\n".join([f"{marker} {first}".rstrip(), *rest]))
        return f"\n\n{chr(10).join(rendered)}\n\n"

    def _blockquote(self, node: Tag) -> str:
        body = normalize_markdown(self._finish(self._children(node))).strip()
        if not body:
            return ""
        quoted = [f"> {line}" if line.strip() else ">" for line in body.split("\n")]
        return _block("\n".join(quoted))

    def _table(self, node: Tag) -> str:
        rows = [row for row in node.find_all("tr") if row.find_parent("table") is node]
        if not rows:
            return ""

        head_row = None
        thead = node.find("thead")
        if thead is not None and thead.find_parent("table") is node:
            head_row = thead.find("tr")
        if head_row is None:
            head_row = rows[0]
        body_rows = [row for row in rows if row is not head_row]

        def cells(row: Tag) -> List[str]:
            values = []
            for cell in row.find_all(["th", "td"], recursive=False):
                text = _collapse(self._children(cell))
                values.append(text.replace("|", "\\|"))
            return values

        header = cells(head_row)
        body = [cells(row) for row in body_rows]
        width = max([len(header), *(len(row) for row in body)])
        if width == 0:
            return ""

        def line(values: List[str]) -> str:
            padded = values + [""] * (width - len(values))
            return "| " + " | ".join(padded) + " |"

        lines = [line(header), "| " + " | ".join(["---"] * width) + " |"]
        lines.extend(line(row) for row in body)
        return _block("\n".join(lines))

    def _figure(self, node: Tag) -> str:
        image = node.find("img")
        caption_tag = node.find("figcaption")
        caption = _collapse(self._children(caption_tag)) if caption_tag else ""
        if image is None:
            return _block(self._children(node))

        src = (image.get("src") or "").strip()
        alt = caption or _collapse(image.get("alt") or "")
        if not src or src.lower().startswith("data:"):
            return _block(alt)
        return _block(f"![{alt}]({src})")

    def _details(self, node: Tag) -> str:
        summary = node.find("summary", recursive=False)
        label = _collapse(self._children(summary)) if summary else ""
        body = "".join(
            self._render(child) for child in node.children if child is not summary
        )
        parts = []
        if label:
            parts.append(f"**{label}**")
        if body.strip():
            parts.append(body.strip())
        return _block("\n\n".join(parts))

    def _term(self, node: Tag) -> str:
        text = _collapse(self._children(node))
        return _block(f"**{text}**") if text else ""

    # ------------------------------------------------------------------
    # Inline elements
    # ------------------------------------------------------------------
    def _strong(self, node: Tag) -> str:
        return _wrap(self._children(node), "**")

    def _emphasis(self, node: Tag) -> str:
        return _wrap(self._children(node), "*")

    def _strike(self, node: Tag) -> str:
        return _wrap(self._children(node), "~~")

    def _inline_code(self, node: Tag) -> str:
        text = _collapse(node.get_text())
        if not text:
            return ""
        if "`" in text:
            return f"`` {text} ``"
        return f"`{text}`"

    def _link(self, node: Tag) -> str:
        text = _collapse(self._children(node))
        href = (node.get("href") or "").strip()
        if not href or href.lower().startswith("javascript:"):
            return text
        if not text:
            return ""
        return f"[{text}]({href.replace(' ', '%20')})"

    def _image(self, node: Tag) -> str:
        src = (node.get("src") or "").strip()
        alt = _collapse(node.get("alt") or "")
        if not src or src.lower().startswith("data:"):
            return alt
        return f"![{alt}]({src.replace(' ', '%20')})"


_default_converter = MarkdownConverter()


def html_to_markdown(html: str, title: Optional[str] = None) -> str:
    markdown = _default_converter.convert(html)
    if not markdown:
        return f"# {title}\n" if title else ""
    if title and not has_heading(markdown):
        return normalize_markdown(f"# {title}\n\n{markdown}")
    return markdown
