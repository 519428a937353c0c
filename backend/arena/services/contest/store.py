import json
import time
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from arena import db
from arena.errors import StorageUnavailable
from arena.models import Competition, LeaderboardEntry, Participant, Question


class SessionExists(Exception):
    """A concurrent create won the (lan_id, competition_id) unique key."""


class ContestStore:
    """Authoritative reads and writes on competitions, participants and the leaderboard.

    Every database failure is rolled back and surfaced as StorageUnavailable so
    callers never see a half-applied write.
    """

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    def _fail(self, exc: SQLAlchemyError):
        self.session.rollback()
        raise StorageUnavailable(cause=exc) from exc

    def get_competition(self, competition_id: int) -> Optional[Competition]:
        try:
            return self.session.get(Competition, competition_id)
        except SQLAlchemyError as exc:
            self._fail(exc)

    def list_competitions(self) -> List[Competition]:
        try:
            return Competition.query.order_by(Competition.start_date.desc(), Competition.id.desc()).all()
        except SQLAlchemyError as exc:
            self._fail(exc)

    def list_questions(self, competition_id: int) -> List[Question]:
        try:
            return Question.query.filter_by(competition_id=competition_id).order_by(Question.id).all()
        except SQLAlchemyError as exc:
            self._fail(exc)

    def get_question(self, question_id: int) -> Optional[Question]:
        try:
            return self.session.get(Question, question_id)
        except SQLAlchemyError as exc:
            self._fail(exc)

    def find_session(self, lan_id: str, competition_id: int, refresh: bool = False) -> Optional[Participant]:
        try:
            participant = Participant.query.filter_by(lan_id=lan_id, competition_id=competition_id).first()
            if participant is not None and refresh:
                self.session.refresh(participant)
            return participant
        except SQLAlchemyError as exc:
            self._fail(exc)

    def open_sessions(self) -> List[Participant]:
        try:
            return Participant.query.filter_by(submitted=False, expired=False).order_by(Participant.end_time).all()
        except SQLAlchemyError as exc:
            self._fail(exc)

    def create_session(self, participant: Participant) -> Participant:
        try:
            self.session.add(participant)
            self.session.commit()
            return participant
        except IntegrityError as exc:
            self.session.rollback()
            raise SessionExists(participant.lan_id) from exc
        except SQLAlchemyError as exc:
            self._fail(exc)

    def update_session(self, lan_id: str, competition_id: int, only_if_open: bool = False, **fields) -> int:
        """Partial update; returns the number of rows changed.

        With only_if_open the update applies only while submitted and expired are
        both false, which makes "set submitted + score" a single compare-and-set.
        """
        stmt = update(Participant).where(
            Participant.lan_id == lan_id,
            Participant.competition_id == competition_id,
        )
        if only_if_open:
            stmt = stmt.where(Participant.submitted.is_(False), Participant.expired.is_(False))
        try:
            result = self.session.execute(stmt.values(**fields).execution_options(synchronize_session=False))
            self.session.commit()
            return result.rowcount
        except SQLAlchemyError as exc:
            self._fail(exc)

    def commit_submission(self, lan_id: str, competition_id: int, answer: dict, score: int) -> bool:
        answer = answer or {}
        changed = self.update_session(
            lan_id, competition_id, only_if_open=True,
            submitted=True,
            score=score,
            submitted_at=time.time(),
            answer_json=json.dumps(answer),
            prompt_file_url=answer.get('prompt_file'),
            output_file_url=answer.get('output_file'),
        )
        return changed == 1

    def mark_expired(self, lan_id: str, competition_id: int) -> bool:
        return self.update_session(lan_id, competition_id, only_if_open=True, expired=True) == 1

    def save_draft(self, lan_id: str, competition_id: int, draft: dict) -> bool:
        return self.update_session(lan_id, competition_id, only_if_open=True, draft_json=json.dumps(draft)) == 1

    def upsert_leaderboard_entry(self, lan_id: str, competition_id: int, score: int) -> LeaderboardEntry:
        """Write the per-competition score and refresh the identifier's overall total.

        Both land in one transaction. The identifier's existing rows are read
        FOR UPDATE, which serializes writers from other processes on databases
        with row locks; within a process callers also hold a per-identifier lock.
        """
        try:
            rows = self.session.scalars(self.identifier_rows_for_update(lan_id)).all()
            entry = next((r for r in rows if r.competition_id == competition_id), None)
            if entry is None:
                entry = LeaderboardEntry(lan_id=lan_id, competition_id=competition_id, score=score)
                self.session.add(entry)
            else:
                entry.score = score
            self.session.flush()
            total = self._sum_scores(lan_id)
            LeaderboardEntry.query.filter_by(lan_id=lan_id).update(
                {'overall_score': total}, synchronize_session='fetch'
            )
            self.session.commit()
            return entry
        except SQLAlchemyError as exc:
            self._fail(exc)

    @staticmethod
    def identifier_rows_for_update(lan_id: str):
        return select(LeaderboardEntry).where(LeaderboardEntry.lan_id == lan_id).with_for_update()

    def _sum_scores(self, lan_id: str) -> int:
        total = self.session.query(func.coalesce(func.sum(LeaderboardEntry.score), 0)).filter(
            LeaderboardEntry.lan_id == lan_id
        ).scalar()
        return int(total or 0)

    def sum_overall_score(self, lan_id: str) -> int:
        try:
            return self._sum_scores(lan_id)
        except SQLAlchemyError as exc:
            self._fail(exc)

    def competition_entries(self, competition_id: int) -> List[LeaderboardEntry]:
        try:
            return LeaderboardEntry.query.filter_by(competition_id=competition_id).order_by(
                LeaderboardEntry.score.desc(), LeaderboardEntry.updated_at
            ).all()
        except SQLAlchemyError as exc:
            self._fail(exc)

    def overall_totals(self):
        try:
            rows = self.session.query(
                LeaderboardEntry.lan_id, func.sum(LeaderboardEntry.score).label('overall_score')
            ).group_by(LeaderboardEntry.lan_id).order_by(func.sum(LeaderboardEntry.score).desc()).all()
            return [(lan_id, int(total or 0)) for lan_id, total in rows]
        except SQLAlchemyError as exc:
            self._fail(exc)
