# petcare/services/knowledge_base.py
"""
Pet-care knowledge base used by the chat assistant.

A ``KnowledgeBase`` is built once from a JSON file and never mutated. Reloading
builds a new instance, which the application swaps in as a whole, so a request
always answers from one consistent snapshot.
"""
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from ..exceptions import Internal

logger = logging.getLogger(__name__)

FALLBACK_ANSWER = (
    "I'm not sure about that one. Please send a message to your clinic from the pet's chat "
    "and a veterinarian will get back to you. If this is an emergency, call your clinic right away."
)
MIN_SCORE = 1.0
_WORD = re.compile(r"[a-z0-9']+")
_STOPWORDS = frozenset({
    "a", "an", "and", "are", "can", "do", "does", "for", "how", "i", "in", "is", "it", "my",
    "of", "on", "or", "should", "the", "to", "what", "when", "with", "you",
})


def tokenize(text: str) -> Tuple[str, ...]:
    return tuple(w for w in _WORD.findall(text.lower()) if w not in _STOPWORDS)


@dataclass(frozen=True)
class KnowledgeEntry:
    topic: str
    answer: str
    keywords: Tuple[str, ...] = ()
    species: Tuple[str, ...] = ()
    sources: Tuple[str, ...] = ()

    def score(self, words: frozenset) -> float:
        """Keyword hits count double, topic word hits count once."""
        keyword_hits = sum(1 for k in self.keywords if k in words)
        topic_hits = sum(1 for t in tokenize(self.topic) if t in words)
        return 2.0 * keyword_hits + topic_hits


@dataclass(frozen=True)
class Answer:
    answer: str
    matched_topic: Optional[str] = None
    score: float = 0.0
    sources: Tuple[str, ...] = ()


@dataclass(frozen=True)
class KnowledgeBase:
    entries: Tuple[KnowledgeEntry, ...] = ()
    source_path: Optional[str] = None
    version: str = ""

    @classmethod
    def from_dict(cls, data: dict, source_path: Optional[str] = None) -> "KnowledgeBase":
        entries = []
        for raw in data.get("entries", []):
            if not raw.get("topic") or not raw.get("answer"):
                logger.warning(f"Skipping knowledge base entry without topic/answer: {raw!r}")
                continue
            entries.append(KnowledgeEntry(
                topic=raw["topic"],
                answer=raw["answer"],
                keywords=tuple(k.lower() for k in raw.get("keywords", [])),
                species=tuple(s.lower() for s in raw.get("species", [])),
                sources=tuple(raw.get("sources", [])),
            ))
        return cls(entries=tuple(entries), source_path=source_path, version=str(data.get("version", "")))

    @classmethod
    def load(cls, path: str) -> "KnowledgeBase":
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load knowledge base from {path}: {e}")
            raise Internal("Knowledge base could not be loaded", error=str(e))
        kb = cls.from_dict(data, source_path=str(Path(path)))
        logger.info(f"Loaded {len(kb)} knowledge base entries from {path}")
        return kb

    def reload(self) -> "KnowledgeBase":
        """Build a fresh instance from the same file; this instance is left untouched."""
        if not self.source_path:
            raise Internal("Knowledge base has no source file to reload from")
        return KnowledgeBase.load(self.source_path)

    def __len__(self) -> int:
        return len(self.entries)

    def answer(self, question: str, species: Optional[str] = None) -> Answer:
        words = frozenset(tokenize(question))
        if species:
            words = words | {species.lower()}
        best, best_score = None, 0.0
        for entry in self.entries:
            score = entry.score(words)
            if entry.species and species and species.lower() in entry.species:
                score += 0.5
            if score > best_score:
                best, best_score = entry, score
        if best is None or best_score < MIN_SCORE:
            return Answer(answer=FALLBACK_ANSWER)
        return Answer(answer=best.answer, matched_topic=best.topic, score=best_score, sources=best.sources)
