"""Weighted text ranking over task titles and descriptions.

A task scores one hit per distinct query term found in a field. Tasks are
ranked by title hits, then description hits, then recency, so a title match
always outranks a description-only match whatever the term counts.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from .models import TEXT_SEARCH_WEIGHTS, Task
from .timeutils import to_utc

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def tokenize(text: Optional[str]) -> List[str]:
    """Split text into lowercase word tokens."""
    if not text:
        return []
    return _TOKEN_RE.findall(text.lower())


def query_terms(query_text: str) -> List[str]:
    """Distinct tokens of a query, in first-seen order."""
    return list(dict.fromkeys(tokenize(query_text)))


@dataclass(frozen=True)
class SearchHit:
    task: Task
    title_hits: int
    description_hits: int

    @property
    def score(self) -> int:
        return (
            TEXT_SEARCH_WEIGHTS["title"] * self.title_hits
            + TEXT_SEARCH_WEIGHTS["description"] * self.description_hits
        )

    def sort_key(self):
        age = to_utc(self.task.created_at) - _EPOCH
        return (-self.title_hits, -self.description_hits, -age, -(self.task.id or 0))


def score_task(task: Task, terms: List[str]) -> SearchHit:
    title_tokens = set(tokenize(task.title))
    description_tokens = set(tokenize(task.description))
    return SearchHit(
        task=task,
        title_hits=sum(1 for term in terms if term in title_tokens),
        description_hits=sum(1 for term in terms if term in description_tokens),
    )


def rank(tasks: Iterable[Task], terms: List[str]) -> List[SearchHit]:
    """Score candidates, drop non-matches and order best first."""
    hits = [score_task(task, terms) for task in tasks]
    hits = [hit for hit in hits if hit.score > 0]
    hits.sort(key=SearchHit.sort_key)
    return hits
