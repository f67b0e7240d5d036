"""
Transcript extraction for the Gemini web UI.

Reads the host document's message tree and produces an ordered, role-tagged
list of :class:`~gemini_forker.models.Message`.  User turns contribute their
displayed text; assistant turns are converted to Markdown after action
buttons, citation chips and tool UI are stripped.

Also hosts the pure helpers the fork workflow uses on a transcript:
:func:`compute_split_point`, :func:`split_transcript` and
:func:`format_transcript`.

Typical usage::

    from gemini_forker.transcript import extract_transcript

    messages = extract_transcript(html, anchor=3)   # up to the 4th reply
"""

import copy
import logging
import re
from typing import Any, Callable, List, Optional, Tuple, Union

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PreformattedString, Tag

from .constants import (
    ASSISTANT_CONTENT_SELECTORS,
    ASSISTANT_MESSAGE_TAG,
    ASSISTANT_NOISE_SELECTOR,
    TRANSCRIPT_SEPARATOR,
    USER_MESSAGE_TAG,
    USER_TEXT_SELECTOR,
    Role,
)
from .models import Message

logger = logging.getLogger(__name__)

Document = Union[str, BeautifulSoup, Tag]

_BLOCK_TAGS = {
    "p", "div", "section", "article", "header", "footer", "main", "aside",
    "figure", "figcaption", "details", "summary",
}
_SKIP_TAGS = {"script", "style", "noscript", "template", "svg", "button"}
_INLINE_TAGS = {
    "strong", "b", "em", "i", "a", "span", "code", "u", "s", "sup", "sub",
    "mark", "small",
}
_LINE_BREAKING_TAGS = _BLOCK_TAGS | {
    "br", "hr", "ul", "ol", "li", "pre", "table", "blockquote",
    "h1", "h2", "h3", "h4", "h5", "h6",
}
_WHITESPACE_RE = re.compile(r"\s+")

# Applied in order to text outside code.
_MARKDOWN_ESCAPES = [
    (re.compile(r"\\"), r"\\\\"),
    (re.compile(r"\*"), r"\\*"),
    (re.compile(r"`"), r"\\`"),
    (re.compile(r"\["), r"\\["),
    (re.compile(r"\]"), r"\\]"),
    (re.compile(r"_"), r"\\_"),
]

# Only where a text node begins a line, since there they would open a block.
_LINE_START_ESCAPES = [
    (re.compile(r"^-"), r"\\-"),
    (re.compile(r"^\+ "), r"\\+ "),
    (re.compile(r"^(=+)"), r"\\\1"),
    (re.compile(r"^(#{1,6}) "), r"\\\1 "),
    (re.compile(r"^~~~"), r"\\~~~"),
    (re.compile(r"^>"), r"\\>"),
    (re.compile(r"^(\d+)\. "), r"\1\\. "),
]


# =============================================================================
# Markdown rendering
# =============================================================================

def html_to_markdown(element: Document) -> str:
    """
    Convert an HTML fragment to lightweight Markdown.

    ATX headings, fenced code blocks, ``*`` bullets, ``**strong**``,
    ``_emphasis_`` and pipe tables, matching what the host's own
    "copy as Markdown" produces closely enough for prompting.

    Args:
        element: HTML string or parsed element.

    Returns:
        Markdown text, stripped.
    """
    if isinstance(element, str):
        element = BeautifulSoup(element, "html.parser")
    return _tidy(_render_children(element))


def _render_children(element: Tag) -> str:
    rendered = ""
    for child in element.children:
        piece = _render(child)
        # Adjacent runs share one space, as in the browser's own layout.
        if rendered and rendered[-1] in " \n" and piece.startswith(" "):
            piece = piece.lstrip(" ")
        rendered += piece
    return rendered


def escape_markdown(text: str, line_start: bool = False) -> str:
    """Backslash-escape characters that would read as Markdown syntax.

    ``line_start`` also escapes what would open a block construct (``# ``,
    ``- ``, ``> ``, ``1. ``...) at the start of ``text``.
    """
    body = text.lstrip()
    lead = text[: len(text) - len(body)]
    for pattern, replacement in _MARKDOWN_ESCAPES:
        body = pattern.sub(replacement, body)
    if line_start:
        for pattern, replacement in _LINE_START_ESCAPES:
            body = pattern.sub(replacement, body)
    return lead + body


def _starts_line(node: NavigableString) -> bool:
    """True if nothing rendered precedes ``node`` on its output line."""
    for sibling in node.previous_siblings:
        if isinstance(sibling, Tag):
            if sibling.name in _SKIP_TAGS:
                continue
            return sibling.name in _LINE_BREAKING_TAGS
        if not isinstance(sibling, PreformattedString) and str(sibling).strip():
            return False
    parent = node.parent
    return parent is None or parent.name not in _INLINE_TAGS


def _wrap_inline(content: str, opener: str, closer: Optional[str] = None) -> str:
    """Wrap ``content`` in inline markers, keeping its edge whitespace outside them."""
    core = content.strip()
    if not core:
        return " " if content else ""
    lead = content[: len(content) - len(content.lstrip())]
    trail = content[len(content.rstrip()):]
    return f"{lead}{opener}{core}{opener if closer is None else closer}{trail}"


def _render(node: Any) -> str:
    if isinstance(node, PreformattedString):
        return ""
    if isinstance(node, NavigableString):
        return escape_markdown(_WHITESPACE_RE.sub(" ", str(node)), _starts_line(node))
    if not isinstance(node, Tag):
        return ""

    tag = node.name.lower()

    if tag in _SKIP_TAGS:
        return ""

    if tag in ("h1", "h2", "h3", "h4", "h5", "h6"):
        content = _render_children(node).strip()
        return f"\n\n{'#' * int(tag[1])} {content}\n\n" if content else ""

    if tag in _BLOCK_TAGS:
        content = _render_children(node).strip()
        return f"\n\n{content}\n\n" if content else ""

    if tag == "br":
        return "\n"

    if tag == "hr":
        return "\n\n* * *\n\n"

    if tag in ("ul", "ol"):
        return _render_list(node, ordered=(tag == "ol"))

    if tag == "li":
        # Stray <li> outside a list.
        return _render_children(node)

    if tag == "pre":
        return _render_code_block(node)

    if tag == "code":
        text = node.get_text()
        return f"`{text}`" if text else ""

    if tag in ("strong", "b"):
        return _wrap_inline(_render_children(node), "**")

    if tag in ("em", "i"):
        return _wrap_inline(_render_children(node), "_")

    if tag == "a":
        content = _render_children(node)
        href = node.get("href", "")
        if href and content.strip():
            return _wrap_inline(content, "[", f"]({href})")
        return content

    if tag == "img":
        src = node.get("src", "")
        if not src:
            return ""
        return f"![{node.get('alt', '')}]({src})"

    if tag == "blockquote":
        content = _tidy(_render_children(node))
        quoted = "\n".join(f"> {line}" if line else ">" for line in content.split("\n"))
        return f"\n\n{quoted}\n\n"

    if tag == "table":
        return _render_table(node)

    return _render_children(node)


def _render_list(node: Tag, ordered: bool) -> str:
    items = []
    for index, item in enumerate(node.find_all("li", recursive=False), start=1):
        prefix = f"{index}. " if ordered else "* "
        content = _tidy(_render_children(item))
        lines = content.split("\n")
        rendered = prefix + lines[0]
        for line in lines[1:]:
            rendered += "\n" + (" " * 4 + line if line else "")
        items.append(rendered)
    if not items:
        return ""
    return "\n\n" + "\n".join(items) + "\n\n"


def _render_code_block(node: Tag) -> str:
    code = node.find("code")
    language = _code_language(node) or (_code_language(code) if code else "")
    text = (code or node).get_text()
    return f"\n\n```{language}\n{text.rstrip(chr(10))}\n```\n\n"


def _code_language(node: Tag) -> str:
    for css_class in node.get("class", []) or []:
        if css_class.startswith("language-"):
            return css_class[len("language-"):]
    return ""


def _render_table(node: Tag) -> str:
    rows = node.find_all("tr")
    if not rows:
        return ""
    lines = []
    for i, row in enumerate(rows):
        cells = [
            _WHITESPACE_RE.sub(" ", cell.get_text()).strip()
            for cell in row.find_all(["td", "th"], recursive=False)
        ]
        lines.append(f"| {' | '.join(cells)} |")
        if i == 0:
            lines.append(f"| {' | '.join('---' for _ in cells)} |")
    return "\n\n" + "\n".join(lines) + "\n\n"


def _tidy(markdown: str) -> str:
    """Trim trailing spaces and collapse blank-line runs outside code fences."""
    out: List[str] = []
    in_fence = False
    blank_run = 0
    for line in markdown.split("\n"):
        is_fence = line.strip().startswith("```")
        if in_fence and not is_fence:
            out.append(line)
            continue
        if is_fence:
            in_fence = not in_fence
            out.append(line.rstrip())
            blank_run = 0
            continue
        line = line.strip() if not line.startswith("    ") else line.rstrip()
        if not line:
            blank_run += 1
            if blank_run > 1:
                continue
        else:
            blank_run = 0
        out.append(line)
    return "\n".join(out).strip()


# =============================================================================
# Extraction
# =============================================================================

def load_document(document: Document) -> Tag:
    """Parse an HTML string; parsed documents and elements pass through."""
    if isinstance(document, Tag):
        return document
    return BeautifulSoup(document or "", "html.parser")


def _inner_text(node: Tag) -> str:
    clone = copy.copy(node)
    for br in clone.find_all("br"):
        br.replace_with("\n")
    return clone.get_text()


def _user_text(node: Tag) -> str:
    lines: List[str] = []
    for el in node.select(USER_TEXT_SELECTOR):
        line = _inner_text(el).strip()
        if line:
            lines.append(line)
        elif lines and lines[-1]:
            # An empty line is the user's paragraph break; keep one.
            lines.append("")
    return "\n".join(lines).strip()


def _assistant_text(node: Tag) -> str:
    content = None
    for selector in ASSISTANT_CONTENT_SELECTORS:
        content = node.select_one(selector)
        if content is not None:
            break
    if content is None:
        return ""
    clone = copy.copy(content)
    for noise in clone.select(ASSISTANT_NOISE_SELECTOR):
        noise.decompose()
    return html_to_markdown(clone)


def _resolve_anchor(nodes: List[Tag], anchor: Any) -> int:
    """Index in ``nodes`` of the assistant message enclosing ``anchor``, or -1."""
    if anchor is None:
        return -1
    if isinstance(anchor, int) and not isinstance(anchor, bool):
        responses = [i for i, n in enumerate(nodes) if n.name == ASSISTANT_MESSAGE_TAG]
        try:
            return responses[anchor]
        except IndexError:
            return -1
    if isinstance(anchor, Tag):
        enclosing = (
            anchor if anchor.name == ASSISTANT_MESSAGE_TAG
            else anchor.find_parent(ASSISTANT_MESSAGE_TAG)
        )
        for i, node in enumerate(nodes):
            if node is enclosing:
                return i
    return -1


def extract_transcript(document: Document, anchor: Any = None) -> List[Message]:
    """
    Extract the visible conversation as role-tagged messages.

    Args:
        document: Host page HTML or a parsed document.
        anchor: Index of a ``model-response`` (negative indexes count from the
            end) or an element inside one.  The transcript ends at, and
            includes, that reply.  An anchor that cannot be found leaves the
            transcript untruncated.

    Returns:
        Messages in document order.  Turns without extractable text are
        omitted.
    """
    root = load_document(document)
    nodes = root.find_all([USER_MESSAGE_TAG, ASSISTANT_MESSAGE_TAG])

    end = _resolve_anchor(nodes, anchor)
    if end > -1:
        nodes = nodes[: end + 1]
    elif anchor is not None:
        logger.warning("Anchor %r not found; extracting the whole conversation", anchor)

    messages = []
    for node in nodes:
        if node.name == USER_MESSAGE_TAG:
            role, text = Role.USER, _user_text(node)
        else:
            role, text = Role.ASSISTANT, _assistant_text(node)
        if text:
            messages.append(Message(role=role, text=text))

    logger.info("Extracted %d messages from %d message nodes", len(messages), len(nodes))
    return messages


class TranscriptExtractor:
    """
    Extractor bound to a live document source.

    Parameters
    ----------
    document_source : callable
        Zero-argument callable returning the current page HTML.  Called on
        every :meth:`extract`, so repeated calls see document changes.
    """

    def __init__(self, document_source: Callable[[], Document]):
        self._document_source = document_source

    def extract(self, anchor: Any = None) -> List[Message]:
        return extract_transcript(self._document_source(), anchor=anchor)


# =============================================================================
# Transcript helpers
# =============================================================================

def compute_split_point(count: int, retain_percent: int) -> int:
    """
    Index separating the summarized head from the retained tail.

    ``floor(count * (1 - retain_percent / 100))`` computed in integers so
    boundary values are exact: 100 gives 0 and 0 gives ``count``.
    """
    if not 0 <= retain_percent <= 100:
        raise ValueError(f"retain_percent must be between 0 and 100, got {retain_percent}")
    return (count * (100 - retain_percent)) // 100


def split_transcript(
    messages: List[Message], retain_percent: int
) -> Tuple[List[Message], List[Message]]:
    """Split into ``(to_summarize, to_retain)``."""
    split_point = compute_split_point(len(messages), retain_percent)
    return list(messages[:split_point]), list(messages[split_point:])


def format_transcript(messages: List[Message]) -> str:
    """Role-labelled blocks joined with a horizontal-rule separator."""
    return TRANSCRIPT_SEPARATOR.join(message.to_markdown() for message in messages)


def build_summary_prompt(instruction: str, messages: List[Message]) -> str:
    return f"{instruction}{TRANSCRIPT_SEPARATOR}{format_transcript(messages)}"


def build_context_block(summary_text: Optional[str], retained: List[Message]) -> str:
    """
    Context seeded into the forked conversation.

    The summary text (if any) comes first, followed by the retained messages
    verbatim.  With nothing retained the block is exactly the summary text.
    """
    parts = (summary_text or "", format_transcript(retained))
    return TRANSCRIPT_SEPARATOR.join(part for part in parts if part)
