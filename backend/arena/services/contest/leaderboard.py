import threading
import weakref
from typing import List

from flask import current_app, has_app_context

from .store import ContestStore


class LeaderboardAggregator:
    """Per-competition scores plus each identifier's cross-competition total.

    The upsert and the total refresh for one identifier run under that
    identifier's lock so two competitions finishing together cannot lose an
    update to overall_score.
    """

    def __init__(self, store: ContestStore):
        self.store = store
        self._registry_lock = threading.Lock()
        # Entries vanish once no writer holds the lock
        self._locks = weakref.WeakValueDictionary()

    def _lock_for(self, lan_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(lan_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[lan_id] = lock
            return lock

    def record_score(self, lan_id: str, competition_id: int, score: int) -> int:
        """Upsert (lan_id, competition_id) -> score; returns the new overall total."""
        with self._lock_for(lan_id):
            entry = self.store.upsert_leaderboard_entry(lan_id, competition_id, score)
            total = entry.overall_score
        if has_app_context():
            current_app.logger.info(
                f"[leaderboard] lan_id={lan_id} competition={competition_id} score={score} overall={total}"
            )
        return total

    def overall_total(self, lan_id: str) -> int:
        return self.store.sum_overall_score(lan_id)

    def competition_board(self, competition_id: int) -> List[dict]:
        return [e.to_dict() for e in self.store.competition_entries(competition_id)]

    def overall_board(self) -> List[dict]:
        return [{'lan_id': lan_id, 'overall_score': total} for lan_id, total in self.store.overall_totals()]
