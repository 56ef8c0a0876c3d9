"""Shared utilities for parsing LLM responses."""

from __future__ import annotations

import json
import re
from typing import List

_LIST_MARKER = re.compile(r"^\s*(?:[-*•]|\d+[.)]|\(\d+\))\s*")


def strip_code_fences(raw: str) -> str:
    if not raw:
        return ""
    text = raw.strip()
    if text.startswith("```"):
        lines = [l for l in text.split("\n") if not l.strip().startswith("```")]
        text = "\n".join(lines)
    return text.strip()


def parse_llm_list(raw: str, limit: int = 0) -> List[str]:
    """Parse a list of short items from an LLM response.

    Accepts a JSON array, one item per line (with or without bullet or
    number markers), or a single comma-separated line. Items are stripped of
    surrounding quotes; empty items are dropped.
    """
    text = strip_code_fences(raw)
    if not text:
        return []

    items: List[str] = []
    if text.startswith("["):
        try:
            parsed = json.loads(text)
            if isinstance(parsed, list):
                items = [str(x) for x in parsed]
        except json.JSONDecodeError:
            pass

    if not items:
        lines = [l for l in text.split("\n") if l.strip()]
        if len(lines) == 1 and "," in lines[0]:
            lines = lines[0].split(",")
        items = [_LIST_MARKER.sub("", l) for l in lines]

    cleaned = []
    for item in items:
        item = item.strip().strip('"').strip("'").strip()
        if item:
            cleaned.append(item)

    if limit > 0:
        cleaned = cleaned[:limit]
    return cleaned
