import random
import time
from dataclasses import dataclass
from typing import Optional

from flask import current_app, has_app_context

from arena.errors import (
    AlreadyUsed,
    CompetitionNotFound,
    CompetitionNotOngoing,
    InvalidIdentifier,
    NoQuestions,
)
from arena.models import Participant, Question
from .clock import remaining_seconds
from .session_store import SessionStore
from .store import ContestStore, SessionExists


def canonical_identifier(raw) -> str:
    return (raw or '').strip().upper()


def _log(message: str) -> None:
    if has_app_context():
        current_app.logger.info(message)


@dataclass
class SessionTicket:
    """What a participant needs to work: their record, their question, their deadline."""

    participant: Participant
    question: Optional[Question]
    resumed: bool

    @property
    def end_time(self) -> float:
        return self.participant.end_time

    def to_dict(self, now: float) -> dict:
        return {
            'participant': self.participant.to_dict(),
            'question': self.question.to_dict() if self.question else None,
            'end_time': self.participant.to_dict()['end_time'],
            'remaining': remaining_seconds(self.participant.end_time, now),
            'resumed': self.resumed,
        }


class SessionManager:
    """Establishes a participant session or resumes the one already on record."""

    def __init__(self, store: ContestStore, session_store: SessionStore,
                 clock=time.time, rng=None, on_overdue=None):
        self.store = store
        self.session_store = session_store
        self._clock = clock
        self._rng = rng or random.Random()
        # Called with (lan_id, competition_id) for records past their deadline but still open
        self._on_overdue = on_overdue

    def establish_or_resume(self, identifier, competition_id: int) -> SessionTicket:
        lan_id = canonical_identifier(identifier)
        if not lan_id:
            raise InvalidIdentifier()

        existing = self.store.find_session(lan_id, competition_id)
        if existing is not None:
            return self._resume(existing)

        competition = self.store.get_competition(competition_id)
        if competition is None:
            raise CompetitionNotFound()
        if competition.status != 'ongoing':
            raise CompetitionNotOngoing(f"Competition is {competition.status}")

        questions = self.store.list_questions(competition_id)
        if not questions:
            raise NoQuestions()
        question = self._rng.choice(questions)

        start = self._clock()
        participant = Participant(
            lan_id=lan_id,
            competition_id=competition_id,
            question_id=question.id,
            start_time=start,
            end_time=start + competition.time_limit_seconds,
            submitted=False,
            expired=False,
        )
        try:
            participant = self.store.create_session(participant)
        except SessionExists:
            # Another login for the same identifier created the row first; take theirs
            winner = self.store.find_session(lan_id, competition_id)
            if winner is None:
                raise
            return self._resume(winner)

        self.session_store.mirror(participant)
        _log(f"[login-new] lan_id={lan_id} competition={competition_id} question={question.id} deadline={participant.end_time}")
        return SessionTicket(participant=participant, question=question, resumed=False)

    def _close_overdue(self, participant: Participant) -> Participant:
        if participant.submitted or participant.expired or self._on_overdue is None:
            return participant
        lan_id, competition_id = participant.key
        _log(f"[login-overdue] lan_id={lan_id} competition={competition_id} deadline={participant.end_time}")
        self._on_overdue(lan_id, competition_id)
        return self.store.find_session(lan_id, competition_id, refresh=True) or participant

    def _resume(self, participant: Participant) -> SessionTicket:
        if participant.is_terminal(self._clock()):
            participant = self._close_overdue(participant)
            self.session_store.mirror(participant)
            _log(
                f"[login-burned] lan_id={participant.lan_id} competition={participant.competition_id} "
                f"submitted={participant.submitted} expired={participant.expired}"
            )
            raise AlreadyUsed()
        self.session_store.mirror(participant)
        _log(f"[login-resume] lan_id={participant.lan_id} competition={participant.competition_id} deadline={participant.end_time}")
        return SessionTicket(
            participant=participant,
            question=self.store.get_question(participant.question_id),
            resumed=True,
        )

    def check_existing(self, competition_id: int) -> Optional[SessionTicket]:
        """Reload path: trust the cookie token only after the database agrees."""
        token = self.session_store.load(competition_id)
        if not self.session_store.looks_active(token, self._clock()):
            return None
        participant = self.store.find_session(canonical_identifier(token['lan_id']), competition_id, refresh=True)
        if participant is None:
            self.session_store.clear(competition_id)
            return None
        if participant.is_terminal(self._clock()):
            self.session_store.mirror(self._close_overdue(participant))
            return None
        return self._resume(participant)
