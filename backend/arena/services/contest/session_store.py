from typing import Any, Dict, MutableMapping, Optional

from flask import session as flask_session

KEY_PREFIX = 'competition_session_'


class SessionStore:
    """Resumption tokens kept in the signed session cookie.

    One token per competition: ``{lan_id, end_time, submitted}``. The token is a
    hint for a fast resume after a reload; the database record always wins.
    """

    def __init__(self, backend: Optional[MutableMapping] = None):
        self._backend = backend

    @property
    def backend(self) -> MutableMapping:
        return flask_session if self._backend is None else self._backend

    @staticmethod
    def key(competition_id) -> str:
        return f"{KEY_PREFIX}{competition_id}"

    def load(self, competition_id) -> Optional[Dict[str, Any]]:
        token = self.backend.get(self.key(competition_id))
        if not isinstance(token, dict) or not token.get('lan_id'):
            return None
        return dict(token)

    def save(self, competition_id, lan_id: str, end_time: float, submitted: bool = False, expired: bool = False) -> None:
        self.backend[self.key(competition_id)] = {
            'lan_id': lan_id,
            'end_time': end_time,
            'submitted': bool(submitted),
            'expired': bool(expired),
        }

    def mirror(self, participant) -> None:
        self.save(
            participant.competition_id,
            participant.lan_id,
            participant.end_time,
            submitted=participant.submitted,
            expired=participant.expired,
        )

    def clear(self, competition_id) -> None:
        self.backend.pop(self.key(competition_id), None)

    def looks_active(self, token: Optional[Dict[str, Any]], now: float) -> bool:
        if not token:
            return False
        try:
            end_time = float(token.get('end_time'))
        except (TypeError, ValueError):
            return False
        return now < end_time and not token.get('submitted') and not token.get('expired')
