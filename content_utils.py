"""
Helpers for TipTap/ProseMirror rich-content documents.

Posts store their body as a JSON document (content_rich). These helpers
derive the plain-text extract, the excerpt and an HTML render from it.
"""
import html
import re
from typing import Any, Dict, List, Optional

BLOCK_NODES = {
    "paragraph",
    "heading",
    "blockquote",
    "codeBlock",
    "bulletList",
    "orderedList",
    "listItem",
    "horizontalRule",
}

EXCERPT_LENGTH = 160


def _collect_text(node: Any, parts: List[str]) -> None:
    if isinstance(node, list):
        for child in node:
            _collect_text(child, parts)
        return

    if not isinstance(node, dict):
        return

    if node.get("type") == "text" and isinstance(node.get("text"), str):
        parts.append(node["text"])
        parts.append(" ")

    if isinstance(node.get("content"), list):
        _collect_text(node["content"], parts)

    if node.get("type") in BLOCK_NODES:
        parts.append("\n")


def extract_text(content_rich: Optional[Dict[str, Any]]) -> str:
    """Plain text of a rich document; blocks end with a newline"""
    if not content_rich:
        return ""

    parts: List[str] = []
    _collect_text(content_rich, parts)
    text = "".join(parts)

    # Collapse runs of spaces but keep block boundaries
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def generate_excerpt(text: Optional[str], max_length: int = EXCERPT_LENGTH) -> str:
    if not text:
        return ""

    clean = re.sub(r"\s+", " ", text).strip()
    if len(clean) <= max_length:
        return clean

    truncated = clean[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > max_length * 0.8:
        truncated = truncated[:last_space]

    return truncated.rstrip() + "..."


_MARK_TAGS = {
    "bold": "strong",
    "italic": "em",
    "underline": "u",
    "strike": "s",
    "code": "code",
}


def _render_text(node: Dict[str, Any]) -> str:
    out = html.escape(node.get("text", ""))
    for mark in node.get("marks") or []:
        mark_type = mark.get("type")
        if mark_type == "link":
            attrs = mark.get("attrs") or {}
            href = html.escape(attrs.get("href") or "", quote=True)
            target = attrs.get("target")
            target_attr = f' target="{html.escape(target, quote=True)}"' if target else ""
            out = f'<a href="{href}"{target_attr}>{out}</a>'
        elif mark_type in _MARK_TAGS:
            tag = _MARK_TAGS[mark_type]
            out = f"<{tag}>{out}</{tag}>"
    return out


def _align_attr(attrs: Dict[str, Any]) -> str:
    align = attrs.get("textAlign")
    if align in ("left", "center", "right"):
        return f' class="align-{align}"'
    return ""


def _render_node(node: Any) -> str:
    if isinstance(node, list):
        return "".join(_render_node(child) for child in node)
    if not isinstance(node, dict):
        return ""

    node_type = node.get("type")
    attrs = node.get("attrs") or {}
    inner = _render_node(node.get("content") or [])

    if node_type == "text":
        return _render_text(node)
    if node_type == "doc":
        return inner
    if node_type == "paragraph":
        return f"<p{_align_attr(attrs)}>{inner}</p>"
    if node_type == "heading":
        level = attrs.get("level") if attrs.get("level") in (1, 2, 3) else 2
        return f"<h{level}{_align_attr(attrs)}>{inner}</h{level}>"
    if node_type == "blockquote":
        return f"<blockquote>{inner}</blockquote>"
    if node_type == "codeBlock":
        return f"<pre><code>{inner}</code></pre>"
    if node_type == "bulletList":
        return f"<ul>{inner}</ul>"
    if node_type == "orderedList":
        return f"<ol>{inner}</ol>"
    if node_type == "listItem":
        return f"<li>{inner}</li>"
    if node_type == "horizontalRule":
        return "<hr>"
    if node_type == "hardBreak":
        return "<br>"
    if node_type == "image":
        src = html.escape(attrs.get("src") or "", quote=True)
        alt = html.escape(attrs.get("alt") or "", quote=True)
        extra = ""
        for key in ("title", "width", "height"):
            if attrs.get(key) not in (None, ""):
                extra += f' {key}="{html.escape(str(attrs[key]), quote=True)}"'
        return f'<img src="{src}" alt="{alt}"{extra}>'
    if node_type == "figure":
        return f"<figure>{inner}</figure>"
    if node_type == "figcaption":
        return f"<figcaption>{inner}</figcaption>"

    # Unknown nodes keep their children
    return inner


def render_html(content_rich: Optional[Dict[str, Any]]) -> str:
    """Render a rich document to (unsanitised) HTML"""
    if not content_rich:
        return ""
    return _render_node(content_rich)
