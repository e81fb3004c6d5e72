import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from rapidfuzz import fuzz

logger = logging.getLogger(__name__)

FALLBACK_CATEGORY = "Other"
FUZZY_THRESHOLD = 85

# Noise that bank exports put in front of the merchant name.
_PREFIXES = re.compile(
    r"^(pgto|pagto|pagamento|compra|debito|débito|pix|ted|doc|pos|card|purchase|payment)\b[\s:*-]*",
    re.IGNORECASE,
)


@dataclass
class KnowledgeBase:
    keywords: dict[str, list[str]] = field(default_factory=dict)

    @property
    def categories(self) -> list[str]:
        return list(self.keywords)


def parse_knowledge(text: str) -> KnowledgeBase:
    """Read ``# Category`` headers and the keyword lines listed under each."""
    kb = KnowledgeBase()
    current: Optional[str] = None
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        header = re.match(r"^#\s+(.+)$", stripped)
        if header:
            current = header.group(1).strip()
            kb.keywords.setdefault(current, [])
            continue
        if current is None:
            continue
        for keyword in re.split(r"[,;]", stripped.lstrip("-* ")):
            keyword = keyword.strip().lower()
            if keyword:
                kb.keywords[current].append(keyword)
    return kb


def load_knowledge(path: Path) -> KnowledgeBase:
    if not path.exists():
        logger.warning(f"categories_file_missing: path={path}")
        return KnowledgeBase()
    kb = parse_knowledge(path.read_text(encoding="utf-8"))
    logger.info(f"categories_loaded: path={path} count={len(kb.keywords)}")
    return kb


def _normalize(description: str) -> str:
    text = description.strip().lower()
    previous = None
    while previous != text:
        previous = text
        text = _PREFIXES.sub("", text).strip()
    return text


class CategoryMatcher:
    def __init__(self, knowledge: KnowledgeBase) -> None:
        self.knowledge = knowledge

    def match(self, description: str) -> str:
        text = _normalize(description)
        if not text:
            return FALLBACK_CATEGORY

        for category, keywords in self.knowledge.keywords.items():
            if any(keyword in text for keyword in keywords):
                return category

        best_category = FALLBACK_CATEGORY
        best_score = 0.0
        for category, keywords in self.knowledge.keywords.items():
            for keyword in keywords:
                score = fuzz.partial_ratio(keyword, text)
                if score > best_score:
                    best_score = score
                    best_category = category
        if best_score >= FUZZY_THRESHOLD:
            return best_category
        return FALLBACK_CATEGORY

    def categorize(self, descriptions: list[str]) -> list[str]:
        return [self.match(d) for d in descriptions]
