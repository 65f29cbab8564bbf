"""Helpers for diagram markup embedded in assistant replies."""

import re

_MERMAID_BLOCK = re.compile(r"```mermaid\n(.*?)\n```", re.DOTALL)


def extract_mermaid_code(content: str) -> str | None:
    """Return the body of the first fenced ``mermaid`` block, if any."""
    match = _MERMAID_BLOCK.search(content)
    return match.group(1) if match else None


def strip_mermaid_code(content: str) -> str:
    """Remove every fenced ``mermaid`` block and trim what is left."""
    return _MERMAID_BLOCK.sub("", content).strip()
