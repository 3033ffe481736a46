"""
Historical Trend Aggregator.

Looks up section and overall percentages of a store's previous audit cycles
for the trend table. Lookups are cached per compilation run and the document
being compiled is always excluded from its own history.

A lookup that fails or times out degrades to None for that (section, cycle)
only; the other lookups carry on.

Also reads the store's earlier deficiencies so that findings which keep
coming back can be flagged as repeats.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Optional, Sequence, Tuple

from checklist import LookupFailure, build_responses, normalize_record
from fetch_pool import fetch_all
from scoring import Percentage, aggregate_section, normalize_stored_score

logger = logging.getLogger(__name__)

# Key under which the store reports the overall stored score of an audit
OVERALL_KEY = "__overall__"


class HistoryCache:
    """
    Per-run cache of historical lookups.

    Owned by a single compilation; never shared between runs. Failed lookups
    are cached too, so each key is queried at most once.
    """

    def __init__(self):
        self._values: Dict[Hashable, Any] = {}
        self._key_locks: Dict[Hashable, threading.Lock] = {}
        self._lock = threading.Lock()
        self.queries = 0

    def get_or_load(self, key: Hashable, loader):
        with self._lock:
            if key in self._values:
                return self._values[key]
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        # One loader per key; other keys load in parallel
        with key_lock:
            with self._lock:
                if key in self._values:
                    return self._values[key]
            value = loader()
            with self._lock:
                self._values[key] = value
                self.queries += 1
            return value

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._values

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)


@dataclass(frozen=True)
class HistoricalScores:
    """All trend-table inputs gathered for one document."""
    cycle_ids: Tuple[str, ...]
    sections: Dict[Tuple[str, str], Percentage] = field(default_factory=dict)
    overall: Dict[str, Percentage] = field(default_factory=dict)

    def section(self, section_title: str, cycle_id: str) -> Percentage:
        return self.sections.get((section_title, cycle_id))

    def overall_for(self, cycle_id: str) -> Percentage:
        return self.overall.get(cycle_id)


def repeat_key(reference_value: Optional[str], title: Optional[str]) -> str:
    """Findings are matched across audits by reference value, else by title."""
    return (reference_value or "").strip() or (title or "").strip()


@dataclass(frozen=True)
class RepeatFinding:
    """A deficiency already recorded in earlier audits of the same store."""
    key: str
    count: int
    document_ids: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {"count": self.count, "document_ids": list(self.document_ids)}


def group_findings(records: Sequence[Dict[str, Any]],
                   current_document_id: str) -> Dict[str, RepeatFinding]:
    """
    Group earlier deficient answers by reference value.

    The count is the number of earlier occurrences; document ids are
    unique, newest first as the store returns them.
    """
    occurrences: Dict[str, List[str]] = {}
    for record in records:
        if record.get("document_id") == current_document_id:
            continue
        key = repeat_key(record.get("reference_value"), record.get("title"))
        if not key:
            continue
        occurrences.setdefault(key, []).append(record.get("document_id") or "")

    return {
        key: RepeatFinding(
            key=key,
            count=len(documents),
            document_ids=tuple(dict.fromkeys(d for d in documents if d)),
        )
        for key, documents in occurrences.items()
    }


class TrendAggregator:
    """Historical lookups for one document of one store."""

    def __init__(self, store, store_name: str, current_document_id: str,
                 cache: Optional[HistoryCache] = None):
        self.store = store
        self.store_name = store_name
        self.current_document_id = current_document_id
        self.cache = cache if cache is not None else HistoryCache()

    # -------------------------------------------------------------------------
    # Raw lookups (cached)
    # -------------------------------------------------------------------------

    def _responses_key(self, section_title: Optional[str], cycle_id: str) -> Tuple:
        return ("responses", self.store_name, section_title, cycle_id)

    def _stored_key(self, cycle_id: str) -> Tuple:
        return ("stored", self.store_name, cycle_id)

    def _load_responses(self, section_title: Optional[str], cycle_id: str) -> Optional[List[Dict[str, Any]]]:
        try:
            records = self.store.get_historical_responses(
                self.store_name, section_title, cycle_id, self.current_document_id
            )
        except Exception as e:
            failure = LookupFailure(self._responses_key(section_title, cycle_id), str(e))
            logger.warning(str(failure))
            return None

        # Never count the document being compiled
        normalized = [normalize_record(r) for r in (records or [])]
        return [r for r in normalized if r["document_id"] != self.current_document_id]

    def _load_stored(self, cycle_id: str) -> Dict[str, Any]:
        try:
            return dict(self.store.get_stored_scores(
                self.store_name, cycle_id, self.current_document_id
            ) or {})
        except Exception as e:
            failure = LookupFailure(self._stored_key(cycle_id), str(e))
            logger.warning(str(failure))
            return {}

    def _load_findings(self) -> Dict[str, RepeatFinding]:
        try:
            records = self.store.get_historical_findings(self.store_name, self.current_document_id)
        except Exception as e:
            failure = LookupFailure(("findings", self.store_name), str(e))
            logger.warning(str(failure))
            return {}
        return group_findings(list(records or []), self.current_document_id)

    def get_repeat_findings(self) -> Dict[str, RepeatFinding]:
        """
        Earlier deficiencies of this store keyed by reference value.

        Read once per run; a failed read means no finding is flagged as
        a repeat.
        """
        return self.cache.get_or_load(("findings", self.store_name), self._load_findings)

    def _responses(self, section_title: Optional[str], cycle_id: str):
        return self.cache.get_or_load(
            self._responses_key(section_title, cycle_id),
            lambda: self._load_responses(section_title, cycle_id),
        )

    def _stored(self, cycle_id: str) -> Dict[str, Any]:
        return self.cache.get_or_load(
            self._stored_key(cycle_id),
            lambda: self._load_stored(cycle_id),
        )

    # -------------------------------------------------------------------------
    # Scores
    # -------------------------------------------------------------------------

    def _score(self, section_title: Optional[str], cycle_id: str) -> Percentage:
        records = self._responses(section_title, cycle_id)
        if records is None:
            return None

        if records:
            responses, _ = build_responses(records)
            return aggregate_section(responses)

        # Older audits only kept their computed scores
        stored_key = section_title if section_title is not None else OVERALL_KEY
        return normalize_stored_score(self._stored(cycle_id).get(stored_key))

    def get_historical_score(self, section_title: str, cycle_id: str) -> Percentage:
        """Percentage of one section in a previous cycle, or None."""
        return self._score(section_title, cycle_id)

    def get_overall_historical_score(self, cycle_id: str) -> Percentage:
        """Percentage across all sections in a previous cycle, or None."""
        return self._score(None, cycle_id)

    def collect(self, section_titles: Sequence[str], cycle_ids: Sequence[str],
                max_workers: int = 8, timeout: float = 10.0) -> HistoricalScores:
        """
        Gather every section and overall score for the trend table.

        Lookups run concurrently on a bounded pool; a lookup that fails or
        exceeds `timeout` becomes None.
        """
        calls = {}
        for cycle_id in cycle_ids:
            for title in section_titles:
                calls[(title, cycle_id)] = (
                    lambda t=title, c=cycle_id: self.get_historical_score(t, c)
                )
            calls[(None, cycle_id)] = (
                lambda c=cycle_id: self.get_overall_historical_score(c)
            )

        outcomes = fetch_all(calls, max_workers=max_workers, timeout=timeout)

        sections: Dict[Tuple[str, str], Percentage] = {}
        overall: Dict[str, Percentage] = {}
        for (title, cycle_id), outcome in outcomes.items():
            value = outcome.value if outcome.ok else None
            if title is None:
                overall[cycle_id] = value
            else:
                sections[(title, cycle_id)] = value

        logger.info(
            f"Collected history for {self.store_name}: {len(section_titles)} sections x "
            f"{len(cycle_ids)} cycles, {self.cache.queries} store queries"
        )

        return HistoricalScores(cycle_ids=tuple(cycle_ids), sections=sections, overall=overall)
