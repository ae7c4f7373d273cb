"""
Note Type Detector

Splits pasted clinical text into the five note categories the extractor
reads from (admission, progress, consultant, procedure, final).

Two branches:

  Unified note:  no structural delimiters and more than 100 characters of
                 text. The whole text goes to admission, progress AND final,
                 so rules scoped to any of those categories still see it.

  Segmented:     the text is split on delimiter lines (===, ---, ***, ##) and
                 each segment is classified by keyword markers in priority
                 order. The first matching category wins.

A non-empty input never produces an empty bundle: if no segment matched,
the full text is assigned to admission.
"""

import logging
import re
from typing import Callable, List, Optional, Tuple

from .config import DEFAULT_THRESHOLDS, ExtractionThresholds
from .schemas import NoteBundle, NoteCategory

logger = logging.getLogger("neuro-discharge")

# Newline followed by a run of 3+ '=', '-', '*' or 2+ '#'
DELIMITER_PATTERN = re.compile(r"\n(?:={3,}|-{3,}|\*{3,}|#{2,})")

_POST_OP_DAY = re.compile(r"post[- ]?op(?:erative)?\s+day", re.IGNORECASE)
_SPECIALTY_NOTE = re.compile(r"(?:cardiology|neurology|medicine|icu|surgery)\s+note", re.IGNORECASE)


def _contains_any(*phrases: str) -> Callable[[str], bool]:
    return lambda lower: any(p in lower for p in phrases)


def _admission(lower: str) -> bool:
    return (
        _contains_any("admission", "history and physical", "h&p", "chief complaint")(lower)
        or ("patient" in lower and "admitted" in lower)
    )


def _progress(lower: str) -> bool:
    return (
        _contains_any("progress note", "daily note", "soap note")(lower)
        or ("neurosurgery" in lower and "note" in lower)
        or bool(_POST_OP_DAY.search(lower))
    )


def _consultant(lower: str) -> bool:
    return (
        _contains_any("consult", "recommendations from")(lower)
        or bool(_SPECIALTY_NOTE.search(lower))
    )


# Order matters: a segment mentioning both "admission" and "discharge" is an admission note
CATEGORY_MARKERS: Tuple[Tuple[NoteCategory, Callable[[str], bool]], ...] = (
    (NoteCategory.ADMISSION, _admission),
    (NoteCategory.PROGRESS, _progress),
    (NoteCategory.CONSULTANT, _consultant),
    (NoteCategory.PROCEDURE, _contains_any(
        "operative note", "procedure note", "operation performed", "operative report", "op note")),
    (NoteCategory.FINAL, _contains_any("discharge", "final note", "disposition")),
)


def split_segments(text: str) -> List[str]:
    """Split raw text on structural delimiter lines. Segments are not stripped."""
    return DELIMITER_PATTERN.split(text)


def classify_segment(segment: str) -> Optional[NoteCategory]:
    """Return the first category whose markers appear in the segment, or None."""
    lower = segment.lower()
    for category, matches in CATEGORY_MARKERS:
        if matches(lower):
            return category
    return None


class NoteTypeDetector:
    """Classifies raw note text into a NoteBundle."""

    def __init__(self, thresholds: ExtractionThresholds = DEFAULT_THRESHOLDS):
        self.thresholds = thresholds

    def detect(self, text: str) -> NoteBundle:
        if not text or not text.strip():
            logger.debug("[DETECT] Empty input, returning empty bundle")
            return NoteBundle()

        segments = split_segments(text)

        if len(segments) == 1 and len(segments[0].strip()) > self.thresholds.unified_note_min_chars:
            logger.debug("[DETECT] No delimiters found, treating input as a unified note")
            return self._unified(text)

        parts = {c: [] for c in NoteCategory}
        unmatched = 0
        for segment in segments:
            trimmed = segment.strip()
            if not trimmed:
                continue

            category = classify_segment(segment)
            if category is None:
                # First substantial unlabeled segment is treated as the admission note
                if not parts[NoteCategory.ADMISSION] and len(trimmed) > self.thresholds.default_segment_min_chars:
                    category = NoteCategory.ADMISSION
                else:
                    unmatched += 1
                    continue
            parts[category].append(trimmed)

        bundle = NoteBundle(**{c.value: "\n\n".join(chunks) for c, chunks in parts.items()})

        if bundle.is_empty():
            logger.debug("[DETECT] No segment matched a category, assigning full text to admission")
            return NoteBundle(admission=text)

        logger.debug(
            f"[DETECT] {len(segments)} segments -> "
            + ", ".join(f"{c.value}={len(parts[c])}" for c in NoteCategory)
            + f", unmatched={unmatched}"
        )
        return bundle

    @staticmethod
    def _unified(text: str) -> NoteBundle:
        return NoteBundle(admission=text, progress=text, final=text)


_detector: Optional[NoteTypeDetector] = None


def get_detector() -> NoteTypeDetector:
    """Get or create the shared detector."""
    global _detector
    if _detector is None:
        _detector = NoteTypeDetector()
    return _detector


def detect_note_types(text: str) -> NoteBundle:
    """Convenience wrapper around the shared detector."""
    return get_detector().detect(text)
