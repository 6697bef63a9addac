"""
Turns a Gmail MIME body tree into bounded, tag-balanced Telegram HTML.

The rendering runs as strictly ordered passes:

    select body -> decode -> strip blocks -> media to links -> anchors to
    placeholders -> flatten structure -> entities -> control characters ->
    whitespace -> escape -> reinsert links -> truncate

Escaping has to happen before the link elements are put back, never after,
otherwise the only markup we emit would be escaped too. The reinsertion pass
records where each ``<a>`` element starts and ends so truncation can pick a
cut point without re-parsing its own output.

``render`` never raises: a failure anywhere falls back to a reduced plain
text rendering, and failing that to ``PARSE_FAILED``.
"""
import base64
import html
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

NO_CONTENT = "(no content)"
PARSE_FAILED = "(parse failed)"
TRUNCATION_WINDOW = 100
LONG_URL_LENGTH = 50


class RenderMode(str, Enum):
    FULL = "full"
    PREVIEW = "preview"


NOTICES: Dict[RenderMode, str] = {
    RenderMode.FULL: "\n\n... (truncated, open in browser for the full message)",
    RenderMode.PREVIEW: "\n\n... (tap to view full)",
}


@dataclass
class ExtractedLink:
    href: str
    text: str


@dataclass
class Attachment:
    name: str
    attachment_id: str
    size: int = 0


# Private-use code points delimit link placeholders; any found in the source are dropped.
_PH_OPEN = "\ue000"
_PH_CLOSE = "\ue001"
_PLACEHOLDER_RE = re.compile(f"{_PH_OPEN}(\\d+){_PH_CLOSE}")

_BLOCK_RE = re.compile(r"(?is)<(style|script|head|title)\b[^>]*>.*?</\1\s*>|<!--.*?-->")
_IMG_RE = re.compile(r"(?is)<img\b[^>]*>")
_VIDEO_RE = re.compile(r"(?is)<video\b[^>]*>")
_SOURCE_RE = re.compile(r"(?is)<source\b[^>]*>")
_ANCHOR_RE = re.compile(r"(?is)<a\b([^>]*)>(.*?)</a\s*>")
_TAG_RE = re.compile(r"<[^>]+>")

_IMAGE_EXT_RE = re.compile(r"\.(jpg|jpeg|png|gif|webp|svg|bmp)(\?|$)", re.IGNORECASE)
_VIDEO_EXT_RE = re.compile(r"\.(mp4|webm|ogg|mov|avi|flv)(\?|$)", re.IGNORECASE)
_AUDIO_EXT_RE = re.compile(r"\.(mp3|wav|ogg|m4a|flac)(\?|$)", re.IGNORECASE)
_DOCUMENT_EXT_RE = re.compile(r"\.(pdf|doc|docx|xls|xlsx|ppt|pptx)(\?|$)", re.IGNORECASE)
_SOURCE_VIDEO_RE = re.compile(r"\.(mp4|webm|ogg|mov)$", re.IGNORECASE)

_STRUCTURE_RULES: Sequence[Tuple["re.Pattern[str]", str]] = [
    (re.compile(r"(?i)<br\s*/?>"), "\n"),
    (re.compile(r"(?i)</p\s*>"), "\n\n"),
    (re.compile(r"(?i)<p\b[^>]*>"), ""),
    (re.compile(r"(?i)</div\s*>"), "\n"),
    (re.compile(r"(?i)<div\b[^>]*>"), ""),
    (re.compile(r"(?i)</li\s*>"), "\n"),
    (re.compile(r"(?i)<li\b[^>]*>"), "\n• "),
    (re.compile(r"(?i)</?(ul|ol)\b[^>]*>"), "\n"),
    (re.compile(r"(?i)</tr\s*>"), "\n"),
    (re.compile(r"(?i)<tr\b[^>]*>"), ""),
    (re.compile(r"(?i)</h[1-6]\s*>"), "\n\n"),
    (re.compile(r"(?i)<h[1-6]\b[^>]*>"), "\n"),
    (_TAG_RE, ""),
]

_ENTITY_RE = re.compile(r"&(#[0-9]{1,7}|#[xX][0-9a-fA-F]{1,6}|[a-zA-Z][a-zA-Z0-9]{1,31});")

NAMED_ENTITIES: Dict[str, str] = {
    "nbsp": " ",
    "amp": "&",
    "lt": "<",
    "gt": ">",
    "quot": '"',
    "apos": "'",
    "copy": "©",
    "reg": "®",
    "trade": "™",
    "euro": "€",
    "pound": "£",
    "yen": "¥",
    "cent": "¢",
    "sect": "§",
    "deg": "°",
    "plusmn": "±",
    "para": "¶",
    "middot": "·",
    "ndash": "–",
    "mdash": "—",
    "lsquo": "‘",
    "rsquo": "’",
    "ldquo": "“",
    "rdquo": "”",
    "bull": "•",
    "hellip": "…",
}

NUMERIC_ENTITIES: Dict[int, str] = {
    0x20: " ",
    0x22: '"',
    0x26: "&",
    0x27: "'",
    0x60: "",
    0xA0: " ",
    0xA9: "©",
    0x200A: "",
    0x200B: "",
    0x2018: "‘",
    0x2019: "’",
    0x201C: "“",
    0x201D: "”",
}

_ZERO_WIDTH_RE = re.compile("[\u200b-\u200d\u2060\ufeff]")
_CONTROL_RE = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_LEADING_DIGITS_RE = re.compile(r"^\d+\s+")

_SAFE_SCHEMES = {"http", "https", "mailto", "tel"}


# ---------------------------------------------------------------------------
# Body selection and decoding
# ---------------------------------------------------------------------------

def find_body(part: Any, mime_type: str) -> Optional[str]:
    """Depth-first search for the first node of ``mime_type`` carrying data."""
    if not isinstance(part, dict):
        return None
    body = part.get("body") or {}
    data = body.get("data") if isinstance(body, dict) else None
    if part.get("mimeType") == mime_type and isinstance(data, str) and data:
        return data
    for child in part.get("parts") or []:
        found = find_body(child, mime_type)
        if found:
            return found
    return None


def decode_base64url(data: str) -> bytes:
    s = re.sub(r"\s+", "", data).replace("-", "+").replace("_", "/")
    s += "=" * (-len(s) % 4)
    return base64.b64decode(s, validate=True)


def decode_body(data: str) -> str:
    return decode_base64url(data).decode("utf-8", errors="replace")


# ---------------------------------------------------------------------------
# HTML passes
# ---------------------------------------------------------------------------

class _LinkCollector:
    def __init__(self) -> None:
        self.links: List[ExtractedLink] = []

    def add(self, href: str, text: str) -> str:
        self.links.append(ExtractedLink(href=href, text=text))
        return f"{_PH_OPEN}{len(self.links) - 1}{_PH_CLOSE}"

    def label_for(self, match: "re.Match[str]") -> str:
        index = int(match.group(1))
        return self.links[index].text if index < len(self.links) else ""


def _attr(tag: str, name: str) -> Optional[str]:
    match = re.search(
        rf"""(?is)(?<![\w-]){name}\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s>]+))""",
        tag,
    )
    if not match:
        return None
    value = next(group for group in match.groups() if group is not None)
    return html.unescape(value).strip()


def strip_blocks(text: str) -> str:
    return _BLOCK_RE.sub("", text)


def convert_media(text: str, collector: _LinkCollector) -> str:
    def image(match: "re.Match[str]") -> str:
        src = _attr(match.group(0), "src")
        if not src:
            return ""
        alt = _attr(match.group(0), "alt")
        label = f"[{alt}]" if alt else "[image]"
        return f"\n{collector.add(src, label)}\n"

    def video(match: "re.Match[str]") -> str:
        src = _attr(match.group(0), "src")
        if not src:
            return ""
        return f"\n{collector.add(src, '[video]')}\n"

    def source(match: "re.Match[str]") -> str:
        src = _attr(match.group(0), "src")
        if not src or not _SOURCE_VIDEO_RE.search(src):
            return ""
        return f"\n{collector.add(src, '[video]')}\n"

    text = _IMG_RE.sub(image, text)
    text = _VIDEO_RE.sub(video, text)
    return _SOURCE_RE.sub(source, text)


def _media_label(url: str) -> Optional[str]:
    if _IMAGE_EXT_RE.search(url):
        return "[image]"
    if _VIDEO_EXT_RE.search(url):
        return "[video]"
    if _AUDIO_EXT_RE.search(url):
        return "[audio]"
    if _DOCUMENT_EXT_RE.search(url):
        return "[document]"
    return None


def link_label(url: str, text: str) -> str:
    """Pick display text for a link whose own text is missing or just a long raw URL."""
    if text and not (text == url and len(url) > LONG_URL_LENGTH):
        return text
    media = _media_label(url)
    if media:
        return media
    if not text and len(url) <= LONG_URL_LENGTH:
        return "[link]"
    try:
        host = urlsplit(url).hostname
    except ValueError:
        host = None
    return f"[{host}]" if host else "[link]"


def extract_links(text: str, collector: _LinkCollector) -> str:
    def anchor(match: "re.Match[str]") -> str:
        href = _attr(match.group(1), "href")
        inner = match.group(2)
        if not href:
            return inner
        # Media nested inside the anchor lends the anchor its label.
        inner = _PLACEHOLDER_RE.sub(collector.label_for, inner)
        inner = html.unescape(_TAG_RE.sub("", inner))
        inner = " ".join(inner.split())
        return f" {collector.add(href, link_label(href, inner))} "

    return _ANCHOR_RE.sub(anchor, text)


def flatten_structure(text: str) -> str:
    for pattern, replacement in _STRUCTURE_RULES:
        text = pattern.sub(replacement, text)
    return text


# ---------------------------------------------------------------------------
# Text normalization
# ---------------------------------------------------------------------------

def _decode_entity(match: "re.Match[str]") -> str:
    body = match.group(1)
    if body.startswith("#"):
        codepoint = int(body[2:], 16) if body[1] in "xX" else int(body[1:])
        if codepoint in NUMERIC_ENTITIES:
            return NUMERIC_ENTITIES[codepoint]
        if codepoint <= 0 or codepoint > 0x10FFFF or 0xD800 <= codepoint <= 0xDFFF:
            return ""
        decoded = chr(codepoint)
        return "" if decoded in (_PH_OPEN, _PH_CLOSE) else decoded
    named = NAMED_ENTITIES.get(body.lower())
    if named is not None:
        return named
    # Unknown names stay as written.
    return html.unescape(match.group(0))


def normalize_entities(text: str) -> str:
    return _ENTITY_RE.sub(_decode_entity, text)


def strip_control_characters(text: str) -> str:
    text = _ZERO_WIDTH_RE.sub("", text)
    return _CONTROL_RE.sub("", text)


def normalize_whitespace(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t\xa0]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = text.strip()
    text = re.sub(r"\n•\s*\n", "\n", text)
    text = re.sub(r"•\s+•", "•", text)
    # Some senders leave a bare number ahead of the body.
    text = _LEADING_DIGITS_RE.sub("", text)
    return text.strip()


# ---------------------------------------------------------------------------
# Markup
# ---------------------------------------------------------------------------

def escape_markup(text: str) -> str:
    return html.escape(text, quote=False).replace('"', "&quot;")


def _safe_href(href: str) -> Optional[str]:
    href = href.strip().replace(" ", "%20")
    if not href or _CONTROL_RE.search(href):
        return None
    try:
        scheme = urlsplit(href).scheme.lower()
    except ValueError:
        return None
    return href if scheme in _SAFE_SCHEMES else None


def link_element(link: ExtractedLink) -> str:
    label = escape_markup(link.text or "[link]")
    href = _safe_href(link.href)
    if href is None:
        return label
    return f'<a href="{escape_markup(href)}">{label}</a>'


def reinsert_links(text: str, links: Sequence[ExtractedLink]) -> Tuple[str, List[Tuple[int, int]]]:
    """Swap placeholders for link elements, returning the text and each element's span."""
    parts: List[str] = []
    spans: List[Tuple[int, int]] = []
    position = 0
    length = 0
    for match in _PLACEHOLDER_RE.finditer(text):
        chunk = text[position:match.start()]
        parts.append(chunk)
        length += len(chunk)
        index = int(match.group(1))
        element = link_element(links[index]) if index < len(links) else ""
        if element.startswith("<a "):
            spans.append((length, length + len(element)))
        parts.append(element)
        length += len(element)
        position = match.end()
    parts.append(text[position:])
    return "".join(parts), spans


# ---------------------------------------------------------------------------
# Truncation
# ---------------------------------------------------------------------------

def _avoid_split_entity(text: str, cut: int) -> int:
    amp = text.rfind("&", max(0, cut - 6), cut)
    if amp != -1 and ";" not in text[amp:cut]:
        return amp
    return cut


def _drop_dangling_link(text: str) -> str:
    if text.count("<a href=") > text.count("</a>"):
        return text[: text.rfind("<a href=")]
    return text


def truncate(text: str, spans: Sequence[Tuple[int, int]], max_length: int, mode: RenderMode) -> str:
    if len(text) <= max_length:
        return text
    cut = max_length
    safe_end = 0
    for _, end in spans:
        if end > max_length:
            break
        safe_end = end
    if safe_end and safe_end > max_length - TRUNCATION_WINDOW:
        cut = safe_end
    else:
        for start, end in spans:
            if start < cut < end:
                cut = start
                break
    cut = _avoid_split_entity(text, cut)
    head = _drop_dangling_link(text[:cut])
    return head.rstrip() + NOTICES[mode]


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def _render(payload: Dict[str, Any], max_length: int, mode: RenderMode) -> str:
    html_data = find_body(payload, "text/html")
    data = html_data or find_body(payload, "text/plain")
    if not data:
        return NO_CONTENT

    text = decode_body(data).replace(_PH_OPEN, "").replace(_PH_CLOSE, "")
    links: List[ExtractedLink] = []
    if html_data:
        collector = _LinkCollector()
        text = strip_blocks(text)
        text = convert_media(text, collector)
        text = extract_links(text, collector)
        text = flatten_structure(text)
        links = collector.links

    text = normalize_entities(text)
    text = strip_control_characters(text)
    text = normalize_whitespace(text)
    text = escape_markup(text)
    text, spans = reinsert_links(text, links)
    if not text:
        return NO_CONTENT
    return truncate(text, spans, max_length, mode)


def _render_plain_fallback(payload: Any, max_length: int, mode: RenderMode) -> str:
    try:
        data = find_body(payload, "text/plain")
        if not data:
            return PARSE_FAILED
        text = decode_body(data)
        text = re.sub(r"&#x[0-9a-fA-F]+;|&#\d+;", "", text)
        text = re.sub(r"(?i)&nbsp;", " ", text)
        text = re.sub(r"(?i)&amp;", "&", text)
        text = re.sub(r"(?i)&copy;", "©", text)
        text = _ZERO_WIDTH_RE.sub("", text).strip()
        text = _LEADING_DIGITS_RE.sub("", text)
        text = escape_markup(text)
        if len(text) > max_length:
            text = text[: _avoid_split_entity(text, max_length)].rstrip() + NOTICES[mode]
        return text or NO_CONTENT
    except Exception:  # noqa: BLE001 - last resort, the sentinel is the answer
        logger.warning("Plain text fallback failed", exc_info=True)
        return PARSE_FAILED


def render(payload: Optional[Dict[str, Any]], max_length: int, mode: RenderMode = RenderMode.PREVIEW) -> str:
    """Render a Gmail message payload to Telegram HTML no longer than ``max_length`` plus a notice."""
    mode = RenderMode(mode)
    try:
        return _render(payload or {}, max_length, mode)
    except Exception:  # noqa: BLE001 - degrade instead of failing the chat reply
        logger.warning("Content extraction failed; falling back to plain text", exc_info=True)
        return _render_plain_fallback(payload or {}, max_length, mode)


def list_attachments(payload: Optional[Dict[str, Any]]) -> List[Attachment]:
    found: List[Attachment] = []

    def visit(part: Any) -> None:
        if not isinstance(part, dict):
            return
        body = part.get("body") or {}
        filename = part.get("filename")
        attachment_id = body.get("attachmentId") if isinstance(body, dict) else None
        if filename and attachment_id:
            try:
                size = int(body.get("size") or 0)
            except (TypeError, ValueError):
                size = 0
            found.append(Attachment(name=str(filename), attachment_id=str(attachment_id), size=size))
        for child in part.get("parts") or []:
            visit(child)

    visit(payload)
    return found
