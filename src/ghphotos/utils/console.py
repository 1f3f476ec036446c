"""Shared rich console for human-readable output."""

from __future__ import annotations

from typing import Optional

from rich.console import Console

# Plan lines contain bracketed tags such as ``[DRY-RUN]`` and long paths, so
# markup and wrapping stay off for plain lines.
console = Console(highlight=False, soft_wrap=True)


def echo(text: str = "", style: Optional[str] = None) -> None:
    """Print *text* verbatim, optionally coloured with a rich *style*."""

    console.print(text, style=style, markup=False)
