"""
Built-in Tools.

General-purpose tools available to tool nodes and agent nodes out of the
box. The sample workflows in ``flowpilot.workflows.library`` use them.
"""

from typing import Any, Dict, List, Optional
from collections import Counter
from datetime import datetime, timezone
import re

from flowpilot.tools.registry import register_tool


_WORD_RE = re.compile(r"[A-Za-z][A-Za-z'\-]*")
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]?")

STOP_WORDS = frozenset(
    """
    a an and are as at be but by for from has have he her his i in is it its
    of on or our she that the their them they this to was we were will with
    you your not no so if then than there these those can could would should
    """.split()
)


@register_tool(
    name="text_stats",
    description="Count characters, words and sentences in a text"
)
def text_stats(text: str) -> Dict[str, Any]:
    """
    Basic statistics for a piece of text.

    Args:
        text: Input text

    Returns:
        Dict with characters, words, sentences and average word length
    """
    text = text or ""
    words = _WORD_RE.findall(text)
    sentences = [s for s in _SENTENCE_RE.findall(text) if s.strip()]
    return {
        "characters": len(text),
        "words": len(words),
        "sentences": len(sentences),
        "avgWordLength": round(sum(len(w) for w in words) / len(words), 2) if words else 0,
    }


@register_tool(
    name="extract_keywords",
    description="Extract the most frequent non-trivial words from a text"
)
def extract_keywords(text: str, limit: int = 5) -> Dict[str, Any]:
    """
    Rank words by frequency, ignoring stop words and very short words.

    Args:
        text: Input text
        limit: Maximum number of keywords

    Returns:
        Dict with 'keywords' list of {word, count}
    """
    words = [w.lower() for w in _WORD_RE.findall(text or "")]
    counts = Counter(w for w in words if len(w) > 2 and w not in STOP_WORDS)
    return {
        "keywords": [
            {"word": word, "count": count}
            for word, count in counts.most_common(max(int(limit), 0))
        ]
    }


@register_tool(
    name="summarize_findings",
    description="Merge a list of findings into a deduplicated summary"
)
def summarize_findings(findings: Optional[List[Any]] = None, topic: str = "") -> Dict[str, Any]:
    """
    Collapse accumulated findings (strings or objects) into one summary.

    Args:
        findings: Items gathered by earlier nodes
        topic: Optional topic for the headline

    Returns:
        Dict with headline, unique items and count
    """
    unique = []
    seen = set()
    for item in findings or []:
        key = str(item).strip().lower()
        if key and key not in seen:
            seen.add(key)
            unique.append(item)

    headline = f"{len(unique)} finding(s)"
    if topic:
        headline += f" on {topic}"

    return {
        "headline": headline,
        "items": unique,
        "count": len(unique),
    }


@register_tool(
    name="current_time",
    description="Current UTC time in ISO 8601 format"
)
def current_time() -> Dict[str, str]:
    """Return the current UTC timestamp."""
    return {"utc": datetime.now(timezone.utc).isoformat()}
