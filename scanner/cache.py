# scanner/cache.py
"""
Content-addressed memoization of AI findings.

Key = "<resource digest>:<modes digest>". The resource digest hashes the
declaration with sorted keys, so property order does not matter but any
property change does. The modes digest keeps results for different
--ai-insights selections apart.
"""

import hashlib
import json
import logging
import threading
from typing import Dict, Iterable, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from models import AnalysisMode, Finding, Resource

logger = logging.getLogger("cdk_insights.cache")


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def resource_digest(resource: Resource) -> str:
    canonical = json.dumps(resource.to_declaration(), sort_keys=True,
                           separators=(",", ":"), default=str)
    return _sha256(canonical)


def modes_digest(modes: Iterable[AnalysisMode]) -> str:
    values = sorted({AnalysisMode(m).value for m in modes})
    return _sha256(",".join(values))[:16]


def cache_key(resource: Resource, modes: Iterable[AnalysisMode]) -> str:
    return f"{resource_digest(resource)}:{modes_digest(modes)}"


class FindingCache:
    """
    Thread-safe in-memory cache, optionally written through to a persistent store.

    The store only needs get(key) -> Optional[List[Finding]] and put(key, findings).
    Store errors, including unreadable entries, degrade to a cache miss / skipped write.
    """

    def __init__(self, store=None):
        self._lock = threading.Lock()
        self._entries: Dict[str, List[Finding]] = {}
        self.store = store
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[List[Finding]]:
        with self._lock:
            if key in self._entries:
                self.hits += 1
                return list(self._entries[key])

        found = None
        if self.store is not None:
            try:
                found = self.store.get(key)
            except (ClientError, BotoCoreError, ValueError, KeyError, TypeError, AttributeError) as e:
                logger.warning("Findings index lookup failed for %s: %s", key, e)

        with self._lock:
            if found is None:
                self.misses += 1
                return None
            self.hits += 1
            self._entries[key] = list(found)
            return list(found)

    def set(self, key: str, findings: List[Finding]) -> None:
        with self._lock:
            self._entries[key] = list(findings)
        if self.store is not None:
            try:
                self.store.put(key, findings)
            except (ClientError, BotoCoreError) as e:
                logger.warning("Could not persist findings for %s: %s", key, e)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
