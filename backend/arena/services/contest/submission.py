"""Submission coordinator: the at-most-once submit for a participant session.

Manual submits (HTTP) and expiry auto-submits (countdown worker) both funnel
through ``SubmissionCoordinator.submit``. Each session has one ``SessionMachine``
whose state moves unauthenticated/active -> submitting -> terminal; the move into
``submitting`` is a compare-and-set taken under a lock before any I/O, so the
second of two racing triggers sees the guard and does nothing. The database
write itself is conditional on ``submitted = false`` as a backstop across
processes.
"""
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from flask import current_app

from arena import socketio
from arena.errors import AlreadyUsed, IncompleteSubmission, StorageUnavailable, SubmissionFailed
from .clock import Countdown, CountdownRegistry, remaining_seconds
from .grading import Grader, get_grader
from .leaderboard import LeaderboardAggregator
from .storage import AnswerStorage
from .store import ContestStore

MANUAL = 'manual'
AUTO = 'auto'
TRIGGERS = (MANUAL, AUTO)

UNAUTHENTICATED = 'unauthenticated'
ACTIVE = 'active'
SUBMITTING = 'submitting'
TERMINAL = 'terminal'

EXPIRY_SUBMIT = 'submit'
EXPIRY_EXPIRE = 'expire'
EXPIRY_POLICIES = (EXPIRY_SUBMIT, EXPIRY_EXPIRE)


def session_room(competition_id, lan_id) -> str:
    return f"session:{competition_id}:{lan_id}"


def _has_content(payload: dict) -> bool:
    return any(v not in (None, '', [], {}) for v in (payload or {}).values())


@dataclass
class SubmitResult:
    lan_id: str
    competition_id: int
    trigger: str
    accepted: bool
    submitted: bool = False
    expired: bool = False
    score: Optional[int] = None
    duplicate: bool = False
    leaderboard_recorded: bool = False

    def to_dict(self):
        return {
            'lan_id': self.lan_id,
            'competition_id': self.competition_id,
            'trigger': self.trigger,
            'accepted': self.accepted,
            'submitted': self.submitted,
            'expired': self.expired,
            'score': self.score,
            'duplicate': self.duplicate,
        }


class SessionMachine:
    """Explicit state for one (lan_id, competition_id)."""

    def __init__(self, key: Tuple[str, int], state: str = UNAUTHENTICATED):
        self.key = key
        self.state = state
        self.result: Optional[SubmitResult] = None
        self._resting = state if state != TERMINAL else UNAUTHENTICATED
        self._expiry_pending = False
        self._lock = threading.Lock()

    def _compare_and_set(self, expected, new) -> bool:
        with self._lock:
            if self.state not in expected:
                return False
            self.state = new
            return True

    def login(self) -> bool:
        self._resting = ACTIVE
        return self._compare_and_set((UNAUTHENTICATED, ACTIVE), ACTIVE)

    def logout(self) -> bool:
        self._resting = UNAUTHENTICATED
        return self._compare_and_set((ACTIVE,), UNAUTHENTICATED)

    def begin_submit(self, trigger: str = MANUAL) -> bool:
        with self._lock:
            if self.state not in (UNAUTHENTICATED, ACTIVE):
                if trigger == AUTO and self.state == SUBMITTING:
                    # Deadline hit mid-submit; whoever holds the guard settles it
                    self._expiry_pending = True
                return False
            self._resting = self.state
            self.state = SUBMITTING
            return True

    def release(self) -> bool:
        """Drop the guard. True when an expiry arrived while it was held."""
        with self._lock:
            if self.state == SUBMITTING:
                self.state = self._resting
            pending, self._expiry_pending = self._expiry_pending, False
            return pending

    def finish(self, result: SubmitResult) -> None:
        with self._lock:
            self.state = TERMINAL
            self.result = result
            self._expiry_pending = False

    @property
    def terminal(self) -> bool:
        return self.state == TERMINAL


class SubmissionCoordinator:

    def __init__(self, store: ContestStore, grader: Grader, storage: AnswerStorage,
                 leaderboard: LeaderboardAggregator, *, empty_expiry_policy: str,
                 empty_score: int = 0, required_fields=('prompt_file', 'output_file'),
                 clock=time.time, tick_interval: float = 1.0, heartbeat: int = 0,
                 expiry_attempts: int = 3, sleep=None):
        if empty_expiry_policy not in EXPIRY_POLICIES:
            raise ValueError(f"EMPTY_EXPIRY_POLICY must be one of {EXPIRY_POLICIES}, got {empty_expiry_policy!r}")
        self.store = store
        self.grader = grader
        self.storage = storage
        self.leaderboard = leaderboard
        self.empty_expiry_policy = empty_expiry_policy
        self.empty_score = empty_score
        self.required_fields = tuple(required_fields)
        self.clock = clock
        self.tick_interval = tick_interval
        self.heartbeat = heartbeat
        self.expiry_attempts = max(1, int(expiry_attempts))
        self.sleep = sleep or socketio.sleep
        self.countdowns = CountdownRegistry()
        self._machines: Dict[Tuple[str, int], SessionMachine] = {}
        self._machines_lock = threading.Lock()

    @classmethod
    def from_app(cls, app) -> 'SubmissionCoordinator':
        cfg = app.config
        store = ContestStore()
        return cls(
            store,
            get_grader(cfg),
            AnswerStorage(cfg['UPLOAD_FOLDER']),
            LeaderboardAggregator(store),
            empty_expiry_policy=cfg.get('EMPTY_EXPIRY_POLICY', EXPIRY_SUBMIT),
            empty_score=int(cfg.get('EMPTY_SUBMISSION_SCORE', 0)),
            required_fields=cfg.get('REQUIRED_ANSWER_FIELDS', ('prompt_file', 'output_file')),
            tick_interval=float(cfg.get('TICK_INTERVAL_SEC', 1)),
            heartbeat=int(cfg.get('TIMER_HEARTBEAT_SEC', 0)),
            expiry_attempts=int(cfg.get('EXPIRY_SUBMIT_ATTEMPTS', 3)),
        )

    # ---- state machines ----

    def machine_for(self, participant) -> SessionMachine:
        key = participant.key
        closed = participant.submitted or participant.expired
        with self._machines_lock:
            machine = self._machines.get(key)
            if machine is None:
                if closed:
                    # Closed records are rebuilt from the database, not tracked
                    machine = SessionMachine(key)
                    machine.finish(self._prior_result(participant, AUTO))
                    return machine
                machine = self._machines[key] = SessionMachine(key)
        if closed and not machine.terminal:
            machine.finish(self._prior_result(participant, AUTO))
        return machine

    def _forget(self, machine: SessionMachine) -> None:
        with self._machines_lock:
            if self._machines.get(machine.key) is machine:
                self._machines.pop(machine.key, None)

    def _settled(self, machine: SessionMachine) -> None:
        """Stop tracking a terminal machine once nothing is left to retry."""
        result = machine.result
        if machine.terminal and (result is None or not result.submitted or result.leaderboard_recorded):
            self._forget(machine)

    def state_of(self, participant) -> str:
        return self.machine_for(participant).state

    def _prior_result(self, participant, trigger) -> SubmitResult:
        return SubmitResult(
            lan_id=participant.lan_id,
            competition_id=participant.competition_id,
            trigger=trigger,
            accepted=False,
            submitted=bool(participant.submitted),
            expired=bool(participant.expired),
            score=participant.score,
            duplicate=True,
            leaderboard_recorded=True,
        )

    # ---- lifecycle hooks used by the API ----

    def attach(self, app, participant) -> SessionMachine:
        """Participant logged in or resumed: mark active and make sure the clock ticks."""
        machine = self.machine_for(participant)
        machine.login()
        if not machine.terminal:
            self.start_countdown(app, participant)
        return machine

    def detach(self, participant) -> None:
        # Logout leaves the countdown running; expiry still auto-submits
        self.machine_for(participant).logout()

    def start_countdown(self, app, participant, clock=None, sleep=None) -> Countdown:
        lan_id, competition_id = participant.key
        room = session_room(competition_id, lan_id)

        def _tick(remaining):
            socketio.emit('countdown', {
                'lan_id': lan_id, 'competition_id': competition_id, 'remaining': remaining,
            }, to=room, namespace='/ws')

        def _expire():
            with app.app_context():
                app.logger.info(f"[timer-fire] session={(lan_id, competition_id)}")
                self.handle_expiry(lan_id, competition_id)

        cd = Countdown(
            participant.key, participant.end_time, _tick, _expire,
            clock=clock or self.now,
            sleep=sleep or (lambda seconds: self.sleep(seconds)),
            interval=self.tick_interval,
            heartbeat=self.heartbeat,
            logger=app.logger,
        )
        return self.countdowns.start(app, cd)

    def now(self) -> float:
        return self.clock()

    def remaining(self, participant) -> int:
        return remaining_seconds(participant.end_time, self.clock())

    # ---- drafts ----

    def save_draft(self, participant, fields: Optional[dict] = None, files: Optional[dict] = None) -> dict:
        machine = self.machine_for(participant)
        if machine.terminal or participant.is_terminal(self.clock()):
            raise AlreadyUsed()
        stored = self.storage.save_files(participant, files or {})
        draft = participant.draft
        draft.update({k: v for k, v in (fields or {}).items() if v is not None})
        draft.update(stored)
        try:
            saved = self.store.save_draft(participant.lan_id, participant.competition_id, draft)
        except StorageUnavailable:
            self.storage.discard(stored.values())
            raise
        if not saved:
            self.storage.discard(stored.values())
            raise AlreadyUsed()
        return draft

    # ---- submit ----

    def submit(self, participant, answer: Optional[dict] = None, trigger: str = MANUAL,
               files: Optional[dict] = None) -> SubmitResult:
        if trigger not in TRIGGERS:
            raise ValueError(f"trigger must be one of {TRIGGERS}")
        log = current_app.logger
        lan_id, competition_id = participant.key
        deadline = participant.end_time
        machine = self.machine_for(participant)

        if not machine.begin_submit(trigger):
            if machine.terminal:
                log.info(f"[submit-noop] lan_id={lan_id} competition={competition_id} trigger={trigger} reason=terminal")
                return self._replay(machine, trigger)
            log.info(f"[submit-noop] lan_id={lan_id} competition={competition_id} trigger={trigger} reason=in-flight")
            return SubmitResult(lan_id, competition_id, trigger, accepted=False, duplicate=True)

        log.info(f"[submit-start] lan_id={lan_id} competition={competition_id} trigger={trigger}")
        stored = {}
        try:
            current = self.store.find_session(lan_id, competition_id, refresh=True) or participant
            if current.submitted or current.expired:
                result = self._prior_result(current, trigger)
            else:
                if trigger == MANUAL and self.clock() > deadline:
                    raise AlreadyUsed()
                stored = self.storage.save_files(current, files or {})
                payload = dict(current.draft)
                payload.update({k: v for k, v in (answer or {}).items() if v not in (None, '')})
                payload.update(stored)

                if trigger == MANUAL:
                    missing = [f for f in self.required_fields if not payload.get(f)]
                    if missing:
                        raise IncompleteSubmission(missing)

                if trigger == AUTO and not _has_content(payload):
                    result = self._commit_empty_expiry(current)
                else:
                    score = self.grader.grade(current, payload) if _has_content(payload) else self.empty_score
                    result = self._commit(current, payload, int(score), trigger)
        except (IncompleteSubmission, AlreadyUsed):
            self.storage.discard(stored.values())
            self._release(machine, trigger, deadline)
            raise
        except (StorageUnavailable, OSError) as exc:
            self.storage.discard(stored.values())
            log.warning(f"[submit-fail] lan_id={lan_id} competition={competition_id} trigger={trigger} cause={exc!r}")
            self._release(machine, trigger, deadline)
            raise SubmissionFailed(cause=getattr(exc, 'cause', None) or exc) from exc

        if result.duplicate:
            self.storage.discard(stored.values())
        machine.finish(result)
        self.countdowns.cancel(machine.key)
        if result.accepted and result.submitted:
            self._record_leaderboard(result)
        if result.accepted:
            self._announce(result)
        self._settled(machine)
        return result

    def _release(self, machine: SessionMachine, trigger: str, deadline: float) -> None:
        """Drop the guard after a failed attempt.

        A failed manual submit still owes the session its expiry when the
        countdown fired during the attempt or the deadline has already passed.
        """
        pending = machine.release()
        if trigger != MANUAL:
            return
        if pending or self.clock() > deadline:
            lan_id, competition_id = machine.key
            current_app.logger.info(
                f"[expire-deferred] lan_id={lan_id} competition={competition_id} pending={pending}"
            )
            self.handle_expiry(lan_id, competition_id)

    def _commit(self, participant, payload: dict, score: int, trigger: str) -> SubmitResult:
        lan_id, competition_id = participant.key
        committed = self.store.commit_submission(lan_id, competition_id, payload, score)
        if not committed:
            # Someone else (another worker, an admin) closed the record first
            current = self.store.find_session(lan_id, competition_id, refresh=True)
            return self._prior_result(current or participant, trigger)
        current_app.logger.info(
            f"[submit-commit] lan_id={lan_id} competition={competition_id} trigger={trigger} score={score}"
        )
        return SubmitResult(lan_id, competition_id, trigger, accepted=True, submitted=True, score=score)

    def _commit_empty_expiry(self, participant) -> SubmitResult:
        lan_id, competition_id = participant.key
        current_app.logger.info(
            f"[expire-empty] lan_id={lan_id} competition={competition_id} policy={self.empty_expiry_policy}"
        )
        if self.empty_expiry_policy == EXPIRY_SUBMIT:
            return self._commit(participant, {}, self.empty_score, AUTO)
        if not self.store.mark_expired(lan_id, competition_id):
            current = self.store.find_session(lan_id, competition_id, refresh=True)
            return self._prior_result(current or participant, AUTO)
        return SubmitResult(lan_id, competition_id, AUTO, accepted=True, expired=True)

    def _record_leaderboard(self, result: SubmitResult) -> None:
        try:
            self.leaderboard.record_score(result.lan_id, result.competition_id, result.score)
            result.leaderboard_recorded = True
        except StorageUnavailable as exc:
            # The submission stands; the next replay of this result retries the upsert
            current_app.logger.warning(
                f"[leaderboard] lan_id={result.lan_id} competition={result.competition_id} deferred cause={exc.cause!r}"
            )

    def _replay(self, machine: SessionMachine, trigger: str) -> SubmitResult:
        prior = machine.result
        if prior.submitted and not prior.leaderboard_recorded:
            self._record_leaderboard(prior)
        self._settled(machine)
        return SubmitResult(
            prior.lan_id, prior.competition_id, trigger, accepted=False,
            submitted=prior.submitted, expired=prior.expired, score=prior.score, duplicate=True,
            leaderboard_recorded=prior.leaderboard_recorded,
        )

    def _announce(self, result: SubmitResult) -> None:
        room = session_room(result.competition_id, result.lan_id)
        event = 'expired' if result.expired else 'submitted'
        socketio.emit(event, result.to_dict(), to=room, namespace='/ws')

    def handle_expiry(self, lan_id: str, competition_id: int) -> Optional[SubmitResult]:
        """Countdown reached zero: auto-submit whatever the participant holds.

        Expiry has to end the session, so storage failures are retried up to
        expiry_attempts times before giving up.
        """
        for attempt in range(1, self.expiry_attempts + 1):
            try:
                participant = self.store.find_session(lan_id, competition_id, refresh=True)
                if participant is None:
                    return None
                return self.submit(participant, trigger=AUTO)
            except (SubmissionFailed, StorageUnavailable) as exc:
                current_app.logger.error(
                    f"[submit-fail] lan_id={lan_id} competition={competition_id} trigger=auto "
                    f"attempt={attempt}/{self.expiry_attempts} cause={exc.cause!r}"
                )
                if attempt < self.expiry_attempts:
                    self.sleep(self.tick_interval)
        return None

    def recover_open_sessions(self, app) -> int:
        """Re-arm countdowns for open sessions after a restart; close the overdue ones.

        Returns how many sessions were looked at.
        """
        sessions = [(p.key, p.end_time) for p in self.store.open_sessions()]
        for (lan_id, competition_id), end_time in sessions:
            if self.clock() > end_time:
                app.logger.info(f"[timer-recover] session={(lan_id, competition_id)} overdue")
                self.handle_expiry(lan_id, competition_id)
                continue
            participant = self.store.find_session(lan_id, competition_id)
            if participant is not None:
                app.logger.info(f"[timer-recover] session={(lan_id, competition_id)} deadline={end_time}")
                self.start_countdown(app, participant)
        return len(sessions)
