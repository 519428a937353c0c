from arena import db
from flask_login import UserMixin
from datetime import datetime, timezone
import json
import time

COMPETITION_STATUSES = ('upcoming', 'ongoing', 'completed')


def _iso(ts):
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _loads(raw, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        return default


class Competition(db.Model):
    __tablename__ = 'competition'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)
    time_limit_minutes = db.Column(db.Integer, nullable=False, default=15)
    status = db.Column(db.String(16), nullable=False, default='upcoming') # upcoming, ongoing, completed
    start_date = db.Column(db.Float, nullable=True)
    end_date = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    questions = db.relationship('Question', back_populates='competition', lazy='dynamic')

    @property
    def time_limit_seconds(self):
        return int(self.time_limit_minutes or 0) * 60

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'time_limit_minutes': self.time_limit_minutes,
            'status': self.status,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
        }


class Question(db.Model):
    __tablename__ = 'question'
    id = db.Column(db.Integer, primary_key=True)
    competition_id = db.Column(db.Integer, db.ForeignKey('competition.id'), nullable=False, index=True)
    title = db.Column(db.String(256), nullable=False)
    description = db.Column(db.Text, nullable=False, default='')
    attachments_json = db.Column('attachments', db.Text, nullable=True)  # JSON list of {name, url}
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    competition = db.relationship('Competition', back_populates='questions')

    def __init__(self, attachments=None, **kwargs):
        super(Question, self).__init__(**kwargs)
        self.attachments = attachments or []

    @property
    def attachments(self):
        return _loads(self.attachments_json, [])

    @attachments.setter
    def attachments(self, value):
        self.attachments_json = json.dumps(list(value or []))

    def to_dict(self):
        return {
            'id': self.id,
            'competition_id': self.competition_id,
            'title': self.title,
            'description': self.description,
            'attachments': self.attachments,
        }


class Participant(UserMixin, db.Model):
    """One identifier's attempt at one competition."""
    __tablename__ = 'participant'
    __table_args__ = (
        db.UniqueConstraint('lan_id', 'competition_id', name='uq_participant_lan_competition'),
    )
    id = db.Column(db.Integer, primary_key=True)
    lan_id = db.Column(db.String(64), nullable=False, index=True)
    competition_id = db.Column(db.Integer, db.ForeignKey('competition.id'), nullable=False, index=True)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=False)
    start_time = db.Column(db.Float, nullable=False)
    end_time = db.Column(db.Float, nullable=False)
    submitted = db.Column(db.Boolean, default=False, nullable=False)
    expired = db.Column(db.Boolean, default=False, nullable=False)
    submitted_at = db.Column(db.Float, nullable=True)
    score = db.Column(db.Integer, nullable=True)
    answer_json = db.Column('answer', db.Text, nullable=True)
    draft_json = db.Column('draft', db.Text, nullable=True)
    prompt_file_url = db.Column(db.String(512), nullable=True)
    output_file_url = db.Column(db.String(512), nullable=True)
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    question = db.relationship('Question')
    competition = db.relationship('Competition')

    @property
    def answer(self):
        return _loads(self.answer_json, None)

    @property
    def draft(self):
        return _loads(self.draft_json, {})

    @property
    def key(self):
        return (self.lan_id, self.competition_id)

    def is_terminal(self, now=None):
        if self.submitted or self.expired:
            return True
        now = time.time() if now is None else now
        return now > self.end_time

    def to_dict(self):
        return {
            'id': self.id,
            'lan_id': self.lan_id,
            'competition_id': self.competition_id,
            'question_id': self.question_id,
            'start_time': _iso(self.start_time),
            'end_time': _iso(self.end_time),
            'submitted': self.submitted,
            'expired': self.expired,
            'score': self.score,
            'prompt_file_url': self.prompt_file_url,
            'output_file_url': self.output_file_url,
        }


class LeaderboardEntry(db.Model):
    __tablename__ = 'leaderboard'
    __table_args__ = (
        db.UniqueConstraint('lan_id', 'competition_id', name='uq_leaderboard_lan_competition'),
    )
    id = db.Column(db.Integer, primary_key=True)
    lan_id = db.Column(db.String(64), nullable=False, index=True)
    competition_id = db.Column(db.Integer, db.ForeignKey('competition.id'), nullable=False, index=True)
    score = db.Column(db.Integer, nullable=False, default=0)
    overall_score = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.Float, nullable=False, default=time.time, onupdate=time.time)

    def to_dict(self):
        return {
            'id': self.id,
            'lan_id': self.lan_id,
            'competition_id': self.competition_id,
            'score': self.score,
            'overall_score': self.overall_score,
            'updated_at': _iso(self.updated_at),
        }
