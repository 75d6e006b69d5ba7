"""
Entity mention detection.

Scans campaign text for references to known entities:
  1. [[Name]] / [[Name|Display]] wiki links, resolved against the index
  2. exact whole-word mentions of names and aliases outside links
  3. fuzzy candidates (capitalised word runs) scored by edit distance and
     token overlap, classified as untagged mention, potential alias or
     misspelling

Pure: no I/O, no shared state. Safe to call from any number of tasks.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein

from content_triage.config import settings
from content_triage.models.enums import DETECTION_PRIORITY, DetectionType

WIKI_LINK_RE = re.compile(r"\[\[([^\]|]+?)(?:\|([^\]]*?))?\]\]")
WORD_RE = re.compile(r"[^\W\d_][\w'\-]*")

# Longest name (in words) considered for fuzzy matching
MAX_CANDIDATE_WORDS = 4


@dataclass(frozen=True)
class KnownEntity:
    """An entry in the detector's entity index."""
    id: int
    name: str
    entity_type: str = "other"
    aliases: tuple[str, ...] = ()

    def names(self) -> tuple[str, ...]:
        return (self.name, *self.aliases)


@dataclass(frozen=True)
class RawDetection:
    detection_type: DetectionType
    matched_text: str
    position_start: int
    position_end: int
    entity_id: Optional[int] = None
    similarity: Optional[float] = None
    context_snippet: str = ""

    @property
    def priority(self) -> int:
        return DETECTION_PRIORITY[self.detection_type]

    def overlaps(self, start: int, end: int) -> bool:
        return self.position_start < end and start < self.position_end


@dataclass(frozen=True)
class DetectorConfig:
    similarity_floor: float = 0.60
    alias_ceiling: float = 0.85
    link_resolved_threshold: float = 0.90
    misspelling_max_edits: int = 2
    misspelling_min_name_length: int = 5
    max_misspellings: int = 20
    min_mention_name_length: int = 3
    snippet_radius: int = 50

    @classmethod
    def from_settings(cls) -> "DetectorConfig":
        return cls(
            similarity_floor=settings.DETECTION_SIMILARITY_FLOOR,
            alias_ceiling=settings.DETECTION_ALIAS_CEILING,
            link_resolved_threshold=settings.WIKI_LINK_RESOLVED_THRESHOLD,
            misspelling_max_edits=settings.MISSPELLING_MAX_EDITS,
            misspelling_min_name_length=settings.MISSPELLING_MIN_NAME_LENGTH,
            max_misspellings=settings.MAX_MISSPELLING_CANDIDATES,
            min_mention_name_length=settings.MIN_MENTION_NAME_LENGTH,
            snippet_radius=settings.CONTEXT_SNIPPET_RADIUS,
        )


@dataclass(frozen=True)
class _IndexedName:
    entity_id: int
    text: str
    lower: str
    tokens: tuple[str, ...] = field(default=())


def detect(
    content: str,
    known_entities: Sequence[KnownEntity],
    exclude_ids: Iterable[int] = (),
    config: Optional[DetectorConfig] = None,
) -> list[RawDetection]:
    """
    Detect entity references in content.

    Returns detections ordered by position_start, ties broken by detection
    type priority. Overlapping detections are resolved greedily: a span
    claimed by a higher-priority detection suppresses any lower-priority
    detection that overlaps it.
    """
    if not content:
        return []
    config = config or DetectorConfig()
    excluded = set(exclude_ids)

    all_names = _index_names(known_entities, min_length=1)
    mention_names = [
        n for n in _index_names(known_entities, min_length=config.min_mention_name_length)
        if n.entity_id not in excluded
    ]

    links = list(_scan_wiki_links(content, all_names, config))
    link_spans = [(d.position_start, d.position_end) for d in links]

    candidates: list[RawDetection] = list(links)
    candidates.extend(_scan_exact_mentions(content, mention_names, link_spans, config))
    candidates.extend(_scan_fuzzy_mentions(content, mention_names, link_spans, config))

    return _claim_spans(candidates)


def extract_context_snippet(content: str, start: int, end: int, radius: int = 50) -> str:
    """Return content[start:end] padded by up to `radius` characters each side."""
    return content[max(0, start - radius):min(len(content), end + radius)]


def strip_wiki_links(content: str) -> str:
    """Replace [[Name]] with Name and [[Name|Display]] with Display."""
    def _replace(match: re.Match) -> str:
        return match.group(2) if match.group(2) else match.group(1)
    return WIKI_LINK_RE.sub(_replace, content)


# ── Scanners ─────────────────────────────────────────────────

def _index_names(entities: Sequence[KnownEntity], min_length: int) -> list[_IndexedName]:
    indexed = []
    for entity in entities:
        seen = set()
        for name in entity.names():
            clean = name.strip() if name else ""
            lower = clean.lower()
            if len(clean) < min_length or lower in seen:
                continue
            seen.add(lower)
            tokens = tuple(t.lower() for t in WORD_RE.findall(clean))
            indexed.append(_IndexedName(entity.id, clean, lower, tokens))
    # Stable order keeps results deterministic when scores tie
    indexed.sort(key=lambda n: (n.entity_id, n.lower))
    return indexed


def _best_match(phrase: str, names: Sequence[_IndexedName]) -> tuple[Optional[_IndexedName], float]:
    lower = phrase.strip().lower()
    best: Optional[_IndexedName] = None
    best_score = 0.0
    for name in names:
        if name.lower == lower:
            return name, 1.0
        score = fuzz.ratio(lower, name.lower) / 100.0
        if score > best_score:
            best, best_score = name, score
    return best, best_score


def _scan_wiki_links(content: str, names: Sequence[_IndexedName], config: DetectorConfig):
    for match in WIKI_LINK_RE.finditer(content):
        target = match.group(1).strip()
        start, end = match.start(), match.end()
        snippet = extract_context_snippet(content, start, end, config.snippet_radius)
        best, score = _best_match(target, names)

        if best is not None and score >= config.link_resolved_threshold:
            yield RawDetection(
                DetectionType.WIKI_LINK_RESOLVED, target, start, end,
                entity_id=best.entity_id, similarity=round(score, 4), context_snippet=snippet,
            )
        elif best is not None and score >= config.similarity_floor:
            # Unresolved, but carry the closest candidate for the reviewer
            yield RawDetection(
                DetectionType.WIKI_LINK_UNRESOLVED, target, start, end,
                entity_id=best.entity_id, similarity=round(score, 4), context_snippet=snippet,
            )
        else:
            yield RawDetection(
                DetectionType.WIKI_LINK_UNRESOLVED, target, start, end, context_snippet=snippet,
            )


def _inside_any(start: int, end: int, spans: Sequence[tuple[int, int]]) -> bool:
    return any(start < s_end and s_start < end for s_start, s_end in spans)


def _scan_exact_mentions(
    content: str,
    names: Sequence[_IndexedName],
    link_spans: Sequence[tuple[int, int]],
    config: DetectorConfig,
):
    for name in names:
        pattern = re.compile(r"(?<!\w)" + re.escape(name.text) + r"(?!\w)", re.IGNORECASE)
        for match in pattern.finditer(content):
            start, end = match.start(), match.end()
            if _inside_any(start, end, link_spans):
                continue
            yield RawDetection(
                DetectionType.UNTAGGED_MENTION, match.group(0), start, end,
                entity_id=name.entity_id, similarity=1.0,
                context_snippet=extract_context_snippet(content, start, end, config.snippet_radius),
            )


def _word_runs(content: str, link_spans: Sequence[tuple[int, int]]) -> list[list[re.Match]]:
    """Group words outside links into runs separated only by whitespace."""
    runs: list[list[re.Match]] = []
    current: list[re.Match] = []
    for word in WORD_RE.finditer(content):
        if _inside_any(word.start(), word.end(), link_spans):
            if current:
                runs.append(current)
            current = []
            continue
        if current and not content[current[-1].end():word.start()].isspace():
            runs.append(current)
            current = []
        current.append(word)
    if current:
        runs.append(current)
    return runs


def _token_overlap(window_tokens: Sequence[str], name_tokens: Sequence[str]) -> float:
    if not name_tokens:
        return 0.0
    return len(set(window_tokens) & set(name_tokens)) / len(set(name_tokens))


def _scan_fuzzy_mentions(
    content: str,
    names: Sequence[_IndexedName],
    link_spans: Sequence[tuple[int, int]],
    config: DetectorConfig,
):
    by_length: dict[int, list[_IndexedName]] = {}
    for name in names:
        if 0 < len(name.tokens) <= MAX_CANDIDATE_WORDS:
            by_length.setdefault(len(name.tokens), []).append(name)

    misspellings = 0
    for run in _word_runs(content, link_spans):
        for i, first in enumerate(run):
            if not first.group(0)[0].isupper():
                continue
            for size, sized_names in by_length.items():
                if i + size > len(run):
                    continue
                start, end = first.start(), run[i + size - 1].end()
                phrase = content[start:end]
                detection = _classify_phrase(phrase, start, end, sized_names, content, config)
                if detection is None:
                    continue
                if detection.detection_type is DetectionType.MISSPELLING:
                    if misspellings >= config.max_misspellings:
                        continue
                    misspellings += 1
                yield detection


def _classify_phrase(
    phrase: str,
    start: int,
    end: int,
    names: Sequence[_IndexedName],
    content: str,
    config: DetectorConfig,
) -> Optional[RawDetection]:
    lower = phrase.lower()
    tokens = tuple(t.lower() for t in WORD_RE.findall(phrase))

    best: Optional[_IndexedName] = None
    best_score = 0.0
    best_edits = 0
    for name in names:
        if name.lower == lower:
            # Exact mentions are reported by the exact scanner
            return None
        edits = Levenshtein.distance(lower, name.lower)
        score = max(
            Levenshtein.normalized_similarity(lower, name.lower),
            _token_overlap(tokens, name.tokens),
        )
        if score > best_score:
            best, best_score, best_edits = name, score, edits

    if best is None or best_score < config.similarity_floor:
        return None

    if best_edits <= config.misspelling_max_edits and len(best.text) >= config.misspelling_min_name_length:
        detection_type = DetectionType.MISSPELLING
    elif best_score >= config.alias_ceiling:
        detection_type = DetectionType.UNTAGGED_MENTION
    else:
        detection_type = DetectionType.POTENTIAL_ALIAS

    return RawDetection(
        detection_type, phrase, start, end,
        entity_id=best.entity_id, similarity=round(best_score, 4),
        context_snippet=extract_context_snippet(content, start, end, config.snippet_radius),
    )


def _claim_spans(candidates: list[RawDetection]) -> list[RawDetection]:
    """
    Greedy claiming: higher priority first, then left to right, longer
    spans and higher similarity winning ties. Survivors are returned in
    document order.
    """
    ranked = sorted(
        candidates,
        key=lambda d: (
            d.priority,
            d.position_start,
            -(d.position_end - d.position_start),
            -(d.similarity or 0.0),
        ),
    )
    claimed: list[RawDetection] = []
    for detection in ranked:
        if any(c.overlaps(detection.position_start, detection.position_end) for c in claimed):
            continue
        claimed.append(detection)
    claimed.sort(key=lambda d: (d.position_start, d.priority))
    return claimed
