from __future__ import annotations

import json
from urllib.parse import urlparse
from xml.dom import minidom
from xml.parsers.expat import ExpatError

from ..content import ContentKind, decode_body
from ..errors import ConversionError
from ..models import OutputFile
from .html_to_md import Document

_RENDERABLE_KINDS = frozenset({ContentKind.JSON, ContentKind.XML, ContentKind.TEXT})


def _truncate_text(text: str, *, max_chars: int = 400_000) -> tuple[str, bool]:
    if len(text) <= max_chars:
        return text, False
    return text[:max_chars].rstrip("\n") + "\n\n[TRUNCATED]\n", True


def _guess_title_from_url(url: str) -> str:
    try:
        parsed = urlparse(url)
    except ValueError:
        return "response"
    path = (parsed.path or "/").rstrip("/")
    last = path.split("/")[-1] if path else ""
    return last or parsed.hostname or "response"


def format_structured_text(
    *,
    kind: ContentKind,
    body: bytes,
    content_type: str | None,
) -> tuple[str, str]:
    """Return (rendered_text, fence_language)."""

    if kind == ContentKind.JSON:
        try:
            obj = json.loads(body.decode("utf-8", errors="strict"))
            pretty = json.dumps(obj, indent=2, ensure_ascii=False) + "\n"
            return pretty, "json"
        except (UnicodeDecodeError, json.JSONDecodeError, ValueError):
            return decode_body(body, content_type), "text"

    if kind == ContentKind.XML:
        text = decode_body(body, content_type)
        try:
            doc = minidom.parseString(text.encode("utf-8"))
            pretty = doc.toprettyxml(indent="  ")
            # minidom can be noisy with blank lines; normalize lightly.
            lines = [ln.rstrip() for ln in pretty.splitlines() if ln.strip()]
            return "\n".join(lines).strip() + "\n", "xml"
        except (ExpatError, UnicodeEncodeError, ValueError):
            return text.strip() + "\n", "xml"

    return decode_body(body, content_type), "text"


def structured_to_document(
    body: bytes,
    *,
    url: str,
    kind: ContentKind,
    content_type: str | None,
) -> Document:
    """Render a JSON, XML or plain-text payload as a fenced Markdown page.

    Payloads rendered in a json or xml fence also keep the original bytes
    as a `raw.<ext>` attachment next to the page.
    """

    if kind not in _RENDERABLE_KINDS:
        raise ConversionError(f"No structured rendering for {kind.value} content at {url}")
    title = _guess_title_from_url(url)
    rendered_text, fence = format_structured_text(
        kind=kind,
        body=body,
        content_type=content_type,
    )
    rendered_text, truncated = _truncate_text(rendered_text)

    content = "\n".join(
        [
            f"# {title}",
            "",
            f"URL: {url}",
            f"Content-Type: {content_type}",
            f"Kind: {kind.value}",
            "",
            "```" + fence,
            rendered_text.rstrip("\n"),
            "```",
            "" if not truncated else "(Output truncated.)",
            "",
        ]
    )
    files: tuple[OutputFile, ...] = ()
    if fence in ("json", "xml"):
        files = (OutputFile(f"raw.{fence}", body),)
    return Document(content=content, title=title, files=files)
