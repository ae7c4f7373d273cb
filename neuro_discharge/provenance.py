"""
Provenance: Traceability for Extracted Fields

Every field the deterministic pass fills carries a FieldProvenance that says
which rule produced it, which note category it was read from, and where in
that text the match sat. The reviewer of a draft summary can always point
back to the exact source span.

Input text is fingerprinted with sha256 so a result can be tied to the notes
it was generated from without storing the notes themselves.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
import hashlib
import json


def sha256_bytes(b: bytes) -> str:
    """Compute SHA-256 hash of raw bytes."""
    return hashlib.sha256(b).hexdigest()


def sha256_text(text: str) -> str:
    return sha256_bytes(text.encode("utf-8"))


def sha256_json(obj: Any) -> str:
    """Compute SHA-256 hash of canonical JSON representation."""
    data = json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    return sha256_bytes(data)


# Where a field value came from
SOURCE_PATTERN = "pattern"
SOURCE_SEMANTIC = "semantic"
SOURCE_ESTIMATED = "estimated"


@dataclass(frozen=True)
class FieldProvenance:
    """
    Traceability object for one extracted field.

    Attributes:
        rule: Name of the rule (or vocabulary family) that produced the value
        category: Note category the text was read from ("all" for the union)
        source: pattern, semantic or estimated
        span: (start, end) offsets of the match within that category text
        context: Surrounding text for semantic candidates
    """
    rule: str
    category: str
    source: str = SOURCE_PATTERN
    span: Optional[Tuple[int, int]] = None
    context: Optional[str] = None

    @staticmethod
    def from_match(rule: str, category: str, match) -> "FieldProvenance":
        return FieldProvenance(rule=rule, category=category, source=SOURCE_PATTERN, span=match.span())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "rule": self.rule,
            "category": self.category,
            "source": self.source,
            "span": list(self.span) if self.span else None,
            "context": self.context,
        }
