"""Rich-text normalization for stored entry bodies.

Legacy content arrives as plain text with blank-line paragraphs, as HTML of
varying quality, or as a mix of both. `normalize` turns any of those into
well-formed HTML:

* input without block-level markup is read as light markdown: it is split on
  blank lines, ``#`` to ``###`` lines become headings, runs of ``- `` lines
  become a list, ``**bold**``, ``*italic*`` and ``[text](url)`` are rendered,
  and the remaining lines of a segment form one ``<p>`` joined by ``<br>``;
* input with block-level markup keeps its structure, but is re-serialized from
  a parse tree so unclosed, mis-nested and stray tags are repaired.

The serializer is canonical (lowercase tags, quoted and escaped attributes,
escaped text), so normalizing already-normalized HTML returns it unchanged.
Markdown is only read when there is no block markup, and its output always
has some, so a second pass never re-reads it.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from html import escape, unescape
from html.parser import HTMLParser
from itertools import groupby

from encyclopedia.app.errors import ContentParseError

VOID_ELEMENTS: frozenset[str] = frozenset(
    {"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr"}
)
BLOCK_ELEMENTS: frozenset[str] = frozenset(
    {
        "address",
        "article",
        "aside",
        "blockquote",
        "dd",
        "div",
        "dl",
        "dt",
        "figcaption",
        "figure",
        "footer",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "header",
        "hr",
        "li",
        "nav",
        "ol",
        "p",
        "pre",
        "section",
        "table",
        "tbody",
        "td",
        "th",
        "thead",
        "tr",
        "ul",
    }
)
# Opening one of these implicitly closes an open paragraph.
PARAGRAPH_CLOSERS: frozenset[str] = BLOCK_ELEMENTS - {
    "dd",
    "dt",
    "figcaption",
    "li",
    "tbody",
    "td",
    "th",
    "thead",
    "tr",
}
# Dropped together with everything inside them.
DROPPED_ELEMENTS: frozenset[str] = frozenset(
    {
        "head",
        "iframe",
        "noembed",
        "noframes",
        "noscript",
        "object",
        "plaintext",
        "script",
        "style",
        "template",
        "textarea",
        "title",
        "xmp",
    }
)
# Document wrappers: the tags go, their children stay.
UNWRAPPED_ELEMENTS: frozenset[str] = frozenset({"html", "body"})
URL_ATTRIBUTES: frozenset[str] = frozenset({"action", "formaction", "href", "poster", "src"})

_TAG_NAME = re.compile(r"[a-z][a-z0-9-]*\Z")
_ATTRIBUTE_NAME = re.compile(r"[a-z_:][a-z0-9_:.-]*\Z")
_DISALLOWED_CHARACTERS = re.compile(r"[\x00-\x08\x0b\x0e-\x1f\x7f\ud800-\udfff]")
_BLANK_LINE = re.compile(r"\n\s*\n")
_SCRIPT_URL = re.compile(r"^(?:javascript|vbscript|data:text/html)", re.IGNORECASE)
_URL_NOISE = re.compile(r"[\s\x00-\x1f]+")
# Markdown is matched against serialized inline HTML, where "<" and ">" only
# delimit tags.
_MARKUP_TOKEN = re.compile(r"(<[^>]*>)")
_HEADING_LINE = re.compile(r"(#{1,3})\s+(\S.*)\Z")
_LIST_LINE = re.compile(r"-\s+(\S.*)\Z")
_BOLD = re.compile(r"\*\*(?=\S)(.+?)(?<=\S)\*\*")
_ITALIC = re.compile(r"\*(?=[^\s*])(.+?)(?<=[^\s*])\*")
_LINK = re.compile(r"\[([^\]\n]+)\]\(([^()\s]+)\)")


@dataclass
class _Element:
    tag: str
    attrs: list[tuple[str, str | None]]
    children: list[_Element | str] = field(default_factory=list)


class _ContentTreeBuilder(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.root = _Element("#root", [])
        self.has_block = False
        self._stack: list[_Element] = [self.root]
        self._skipping: str | None = None
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if self._skipping is not None:
            if tag == self._skipping:
                self._skip_depth += 1
            return
        if tag in DROPPED_ELEMENTS:
            self._skipping = tag
            self._skip_depth = 1
            return
        if tag in UNWRAPPED_ELEMENTS or _TAG_NAME.match(tag) is None:
            return
        self._open(tag, attrs)

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if self._skipping is not None or tag in DROPPED_ELEMENTS or tag in UNWRAPPED_ELEMENTS:
            return
        if _TAG_NAME.match(tag) is None:
            return
        self._open(tag, attrs)
        if tag not in VOID_ELEMENTS:
            self._close(tag)

    def handle_endtag(self, tag: str) -> None:
        if self._skipping is not None:
            if tag == self._skipping:
                self._skip_depth -= 1
                if self._skip_depth == 0:
                    self._skipping = None
            return
        if tag in VOID_ELEMENTS or tag in UNWRAPPED_ELEMENTS:
            return
        self._close(tag)

    def handle_data(self, data: str) -> None:
        if self._skipping is not None or not data:
            return
        children = self._stack[-1].children
        if children and isinstance(children[-1], str):
            children[-1] += data
        else:
            children.append(data)

    def _open(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in PARAGRAPH_CLOSERS:
            self._close_open_paragraph()
        elif tag == "li":
            self._close_open_list_item()
        element = _Element(tag, _clean_attributes(attrs))
        self._stack[-1].children.append(element)
        if tag in BLOCK_ELEMENTS:
            self.has_block = True
        if tag not in VOID_ELEMENTS:
            self._stack.append(element)

    def _close(self, tag: str) -> None:
        # Closing an outer element closes everything still open inside it;
        # an end tag with no matching open element is dropped.
        for index in range(len(self._stack) - 1, 0, -1):
            if self._stack[index].tag == tag:
                del self._stack[index:]
                return

    def _close_open_paragraph(self) -> None:
        if any(element.tag == "p" for element in self._stack[1:]):
            self._close("p")

    def _close_open_list_item(self) -> None:
        for element in reversed(self._stack[1:]):
            if element.tag in {"ul", "ol"}:
                return
            if element.tag == "li":
                self._close("li")
                return


def normalize(raw_content: str | None) -> str:
    """Return well-formed HTML for ``raw_content``. Never raises.

    Content that cannot be parsed (control characters, lone surrogates,
    pathological nesting) is escaped into a single paragraph instead.
    """
    try:
        return normalize_strict(raw_content)
    except ContentParseError:
        return _escape_into_paragraph(raw_content)


def normalize_strict(raw_content: object) -> str:
    """Like `normalize`, but raises `ContentParseError` instead of falling back."""
    if raw_content is None:
        return ""
    if not isinstance(raw_content, str):
        raise ContentParseError(f"content must be text, got {type(raw_content).__name__}")
    if not raw_content.strip():
        return ""
    disallowed = _DISALLOWED_CHARACTERS.search(raw_content)
    if disallowed is not None:
        raise ContentParseError(
            f"content contains disallowed character U+{ord(disallowed.group()):04X} "
            f"at offset {disallowed.start()}"
        )

    try:
        builder = _parse(raw_content)
        if builder.has_block:
            html_text = _serialize(builder.root.children)
        else:
            html_text = _render_markdown(_serialize(builder.root.children))
    except RecursionError as exc:
        raise ContentParseError("content is nested too deeply") from exc
    except Exception as exc:
        raise ContentParseError(f"content could not be parsed: {exc}") from exc
    return html_text.strip()


def plain_text(html_text: str | None) -> str:
    """Visible text of ``html_text`` with runs of whitespace collapsed to one space."""
    if not html_text:
        return ""
    return " ".join(_text_of(_parse(html_text).root.children).split())


def _text_of(nodes: list[_Element | str]) -> str:
    parts: list[str] = []
    for node in nodes:
        if isinstance(node, str):
            parts.append(node)
            continue
        parts.append(_text_of(node.children))
        if node.tag in BLOCK_ELEMENTS or node.tag == "br":
            parts.append(" ")
    return "".join(parts)


def _parse(text: str) -> _ContentTreeBuilder:
    builder = _ContentTreeBuilder()
    builder.feed(text)
    builder.close()
    return builder


def _render_markdown(inline_html: str) -> str:
    blocks: list[str] = []
    for segment in _BLANK_LINE.split(inline_html):
        lines = [_classify_line(line.strip()) for line in segment.split("\n") if line.strip()]
        for kind, group in groupby(lines, key=lambda line: line[0]):
            rendered = [html_text for _, html_text in group]
            if kind == "heading":
                blocks.extend(rendered)
            elif kind == "item":
                blocks.append("<ul>" + "".join(f"<li>{item}</li>" for item in rendered) + "</ul>")
            else:
                blocks.append("<p>" + "<br>".join(rendered) + "</p>")
    # Inline elements may span lines; a second pass closes them per block.
    return _serialize(_parse("\n".join(blocks)).root.children)


def _classify_line(line: str) -> tuple[str, str]:
    heading = _HEADING_LINE.match(line)
    if heading is not None:
        level = len(heading.group(1))
        return "heading", f"<h{level}>{_render_inline(heading.group(2))}</h{level}>"
    item = _LIST_LINE.match(line)
    if item is not None:
        return "item", _render_inline(item.group(1))
    return "text", _render_inline(line)


def _render_inline(line: str) -> str:
    # Links first, so emphasis markers inside a URL end up in an attribute.
    return _on_text(_on_text(line, _render_links), _render_emphasis)


def _on_text(html_text: str, render: Callable[[str], str]) -> str:
    parts = _MARKUP_TOKEN.split(html_text)
    return "".join(part if index % 2 else render(part) for index, part in enumerate(parts))


def _render_links(text: str) -> str:
    return _LINK.sub(
        lambda match: f'<a href="{escape(unescape(match.group(2)), quote=True)}">{match.group(1)}</a>',
        text,
    )


def _render_emphasis(text: str) -> str:
    text = _BOLD.sub(r"<strong>\1</strong>", text)
    return _ITALIC.sub(r"<em>\1</em>", text)


def _serialize(nodes: list[_Element | str]) -> str:
    parts: list[str] = []
    for node in nodes:
        if isinstance(node, str):
            parts.append(escape(node, quote=False))
            continue
        parts.append(f"<{node.tag}{_serialize_attributes(node.attrs)}>")
        if node.tag in VOID_ELEMENTS:
            continue
        parts.append(_serialize(node.children))
        parts.append(f"</{node.tag}>")
    return "".join(parts)


def _serialize_attributes(attrs: list[tuple[str, str | None]]) -> str:
    rendered: list[str] = []
    for name, value in attrs:
        if value is None:
            rendered.append(f" {name}")
            continue
        escaped = escape(value, quote=True).replace("\n", "&#10;").replace("\r", "&#13;")
        rendered.append(f' {name}="{escaped}"')
    return "".join(rendered)


def _clean_attributes(attrs: list[tuple[str, str | None]]) -> list[tuple[str, str | None]]:
    seen: set[str] = set()
    cleaned: list[tuple[str, str | None]] = []
    for name, value in attrs:
        if name in seen:
            continue
        seen.add(name)
        if _ATTRIBUTE_NAME.match(name) is None or name.startswith("on"):
            continue
        if value is not None and _is_url_attribute(name) and _is_script_url(value):
            continue
        cleaned.append((name, value))
    return cleaned


def _is_url_attribute(name: str) -> bool:
    return name in URL_ATTRIBUTES or name.endswith(":href")


def _is_script_url(value: str) -> bool:
    return _SCRIPT_URL.match(_URL_NOISE.sub("", value)) is not None


def _escape_into_paragraph(raw_content: object) -> str:
    if isinstance(raw_content, bytes):
        text = raw_content.decode("utf-8", errors="replace")
    elif isinstance(raw_content, str):
        text = raw_content
    else:
        text = "" if raw_content is None else str(raw_content)
    cleaned = _DISALLOWED_CHARACTERS.sub("", text).strip()
    if not cleaned:
        return ""
    return f"<p>{escape(cleaned, quote=False)}</p>"
