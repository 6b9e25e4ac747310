from __future__ import annotations

import hashlib
from typing import Optional

from .models import (
    DRACULA_COLORS,
    LIGHT_COLORS,
    SEPIA_COLORS,
    StyleDescriptor,
)
from .templating import render_template

MAX_CUSTOM_CSS_LENGTH = 200_000
STYLE_HASH_BYTES = 8

SYNTAX_HIGHLIGHT_COLORFUL_CSS = """/* Colorful syntax highlight */
pre .code-kw, pre.source-code .code-kw, pre code .code-kw { color: #ff79c6; font-weight: 600; }
pre .code-str, pre.source-code .code-str, pre code .code-str { color: #f1fa8c; }
pre .code-num, pre.source-code .code-num, pre code .code-num { color: #FFB86C; }
pre .code-com, pre.source-code .code-com, pre code .code-com { color: #6272a4; font-style: italic; }
pre .code-fn, pre.source-code .code-fn, pre code .code-fn { color: #50fa7b; }
pre .code-method, pre.source-code .code-method, pre code .code-method { color: #69FF94; }
pre .code-cls, pre.source-code .code-cls, pre code .code-cls { color: #8be9fd; font-weight: 600; }
pre .code-dec, pre.source-code .code-dec, pre code .code-dec { color: #fff36c; }
pre .code-builtin, pre.source-code .code-builtin, pre code .code-builtin { color: #BD93F9; }
pre .code-op, pre.source-code .code-op, pre code .code-op { color: #FF92DF; }
"""

SYNTAX_HIGHLIGHT_MUTED_CSS = """/* Muted syntax highlight */
pre .code-kw, pre.source-code .code-kw, pre code .code-kw { color: #A3144D; font-weight: 600; }
pre .code-str, pre.source-code .code-str, pre code .code-str { color: #846E15; }
pre .code-num, pre.source-code .code-num, pre code .code-num { color: #A34D14; }
pre .code-com, pre.source-code .code-com, pre code .code-com { color: #6C664B; font-style: italic; }
pre .code-fn, pre.source-code .code-fn, pre code .code-fn { color: #14710A; }
pre .code-method, pre.source-code .code-method, pre code .code-method { color: #198D0C; }
pre .code-cls, pre.source-code .code-cls, pre code .code-cls { color: #036A96; font-weight: 600; }
pre .code-dec, pre.source-code .code-dec, pre code .code-dec { color: #a8700a; }
pre .code-builtin, pre.source-code .code-builtin, pre code .code-builtin { color: #644AC9; }
pre .code-op, pre.source-code .code-op, pre code .code-op { color: #BF185A; }
"""

DEFAULT_STYLE = StyleDescriptor(
    font_family="Segoe UI, sans-serif",
    colors=LIGHT_COLORS,
    custom_css=SYNTAX_HIGHLIGHT_MUTED_CSS,
)
DRACULA_STYLE = StyleDescriptor(
    font_family="Segoe UI, sans-serif",
    colors=DRACULA_COLORS,
    custom_css=SYNTAX_HIGHLIGHT_COLORFUL_CSS,
)
SEPIA_STYLE = StyleDescriptor(
    font_family="Georgia, serif",
    letter_spacing=0.1,
    margin_horizontal=42.0,
    margin_vertical=22.0,
    colors=SEPIA_COLORS,
    custom_css=SYNTAX_HIGHLIGHT_MUTED_CSS,
)

PRESETS: dict[str, StyleDescriptor] = {
    "default": DEFAULT_STYLE,
    "light": DEFAULT_STYLE,
    "dracula": DRACULA_STYLE,
    "dark": DRACULA_STYLE,
    "sepia": SEPIA_STYLE,
}


class StyleError(ValueError):
    pass


def preset(name: Optional[str]) -> StyleDescriptor:
    key = (name or "default").strip().lower() or "default"
    try:
        return PRESETS[key]
    except KeyError as exc:
        raise StyleError(f"Unknown theme '{name}'") from exc


def validate_custom_css(raw: Optional[str]) -> Optional[str]:
    """Return an error message for unusable custom CSS, ``None`` when it is fine.

    The check is structural only: balanced braces, closed strings and comments,
    and nothing that would end the surrounding ``<style>`` element early.
    """
    if not raw or not raw.strip():
        return None

    if len(raw) > MAX_CUSTOM_CSS_LENGTH:
        return f"Custom CSS is too long (over {MAX_CUSTOM_CSS_LENGTH} characters)"
    if "\x00" in raw:
        return "Custom CSS contains invalid characters"
    if "</style" in raw.lower():
        return "Custom CSS must not close the style element"

    depth = 0
    in_string: Optional[str] = None
    escape = False
    i = 0
    while i < len(raw):
        ch = raw[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == in_string:
                in_string = None
            i += 1
            continue

        if ch in ("'", '"'):
            in_string = ch
        elif ch == "/" and raw.startswith("*", i + 1):
            end = raw.find("*/", i + 2)
            if end == -1:
                return "Custom CSS has an unterminated comment"
            i = end + 2
            continue
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth < 0:
                return "Custom CSS has unbalanced braces"
        i += 1

    if in_string:
        return "Custom CSS has an unterminated string"
    if depth != 0:
        return "Custom CSS has unbalanced braces"
    return None


def render_stylesheet(style: StyleDescriptor) -> str:
    return render_template("reader.css", style=style, colors=style.colors)


def style_cache_segment(style: StyleDescriptor) -> str:
    digest = hashlib.sha256(render_stylesheet(style).encode("utf-8")).digest()
    return digest[:STYLE_HASH_BYTES].hex().upper()
