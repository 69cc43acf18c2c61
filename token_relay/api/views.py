"""Minimal HTML pages for the browser side of the callback."""

from __future__ import annotations

from html import escape
from typing import Any, Mapping

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><title>{title}</title></head>
<body>
<h1>{title}</h1>
{body}
</body>
</html>
"""


def _render(title: str, body: str) -> str:
    return _PAGE.format(title=escape(title), body=body)


def render_callback_success(data: Mapping[str, Any]) -> str:
    rows = "\n".join(
        f'<dt>{escape(label)}</dt><dd id="{key}">{escape(str(data.get(key, "")))}</dd>'
        for key, label in (
            ("access_token", "Access token"),
            ("sub", "Subject"),
            ("expires_in", "Expires in (seconds)"),
        )
    )
    return _render("Authorization complete", f"<dl>\n{rows}\n</dl>")


def render_callback_error(error: str) -> str:
    return _render("Authorization failed", f'<p id="error">{escape(error)}</p>')


__all__ = ["render_callback_error", "render_callback_success"]
