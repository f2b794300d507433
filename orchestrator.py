"""Battle lifecycle per room: idle -> countdown -> running -> scored -> idle.

Every read-modify-write of a room's phase, code, test input or outcomes runs
under that room's lock, and phase broadcasts are emitted while the lock is
held so ticks, battle start and results reach the room in order. Sandbox
runs happen on a worker pool outside the lock; their outcomes are merged
back under it. Countdown ticks and the round deadline are timer callbacks,
never sleeps on a handler thread.
"""
import logging
import random
import threading
from concurrent.futures import ThreadPoolExecutor

from aggregator import aggregate
from config import BattleConfig
from errors import DuplicateSubmission, InvalidPhaseTransition, RuntimeFault
from models import ExecutionOutcome, Phase

logger = logging.getLogger(__name__)

NO_SUBMISSION = "no submission / timed out"
NO_SUBMISSION_KIND = "no_submission"


class TimerScheduler:
    def call_later(self, delay, fn, *args):
        timer = threading.Timer(delay, self._guarded, (fn, args))
        timer.daemon = True
        timer.start()
        return timer

    @staticmethod
    def _guarded(fn, args):
        try:
            fn(*args)
        except Exception:
            logger.exception("Scheduled callback %s failed", getattr(fn, '__name__', fn))


class SessionOrchestrator:
    def __init__(self, registry, channel, executor, config=None, scheduler=None, pool=None, rng=None):
        self.registry = registry
        self.channel = channel
        self.executor = executor
        self.config = config or BattleConfig()
        self.scheduler = scheduler or TimerScheduler()
        self.pool = pool or ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix='sandbox')
        self.rng = rng or random.Random()
        self._timers = {}  # {room_id: pending timer handle}

    # Membership

    def join(self, room_id, participant_id, display_name=None):
        self.registry.check_room_id(room_id)
        current = self.registry.room_id_of(participant_id)
        if current is not None and current != room_id:
            self.leave(participant_id)

        room, participant = self.registry.join(room_id, participant_id, display_name)
        self.channel.attach(participant_id, room.id)
        with room.lock:
            self.channel.to_participant(participant_id, 'codeUpdate', room.code)
            self.channel.to_room(room.id, 'participantJoined', {
                'participant': participant.to_dict(),
                'participants': room.participant_list(),
            }, skip=participant_id)
            # Late joiners take part in the running round.
            if room.phase in (Phase.COUNTDOWN, Phase.RUNNING):
                room.roster[participant_id] = participant.display_name
            if room.phase == Phase.RUNNING:
                self.channel.to_participant(participant_id, 'battleStart', list(room.test_input))
        return room

    def leave(self, participant_id):
        room, participant = self.registry.leave(participant_id)
        if room is None:
            return None
        self.channel.detach(participant_id, room.id)

        finished = False
        with room.lock:
            if participant_id in room.outcomes and room.outcomes[participant_id] is None:
                # In-flight run is abandoned; its outcome is dropped on arrival.
                del room.outcomes[participant_id]
            self.channel.to_room(room.id, 'participantLeft', {
                'participantId': participant_id,
                'participants': room.participant_list(),
            })
            if room.phase == Phase.RUNNING and self._round_complete(room):
                self._finish_round(room)
                finished = True
        if finished:
            self.registry.discard_if_empty(room.id)
        return room

    # Idle phase

    def code_change(self, participant_id, text):
        room = self.registry.room_of(participant_id)
        with room.lock:
            if room.phase != Phase.IDLE:
                raise InvalidPhaseTransition(room.id, room.phase.value, 'change code')
            room.code = text
            room.touch()
            self.channel.to_room(room.id, 'codeUpdate', text, skip=participant_id)
        return room

    def start_battle(self, participant_id):
        room = self.registry.room_of(participant_id)
        with room.lock:
            if room.phase != Phase.IDLE:
                raise InvalidPhaseTransition(room.id, room.phase.value, 'start a battle')
            room.phase = Phase.COUNTDOWN
            room.round_number += 1
            room.test_input = self._generate_input()
            room.outcomes = {}
            room.roster = {pid: p.display_name for pid, p in room.participants.items()}
            room.touch()
            round_number = room.round_number
            logger.info("Room %s round %d: countdown started by %s",
                        room.id, round_number, participant_id)
        self._countdown(room, round_number, self.config.countdown_ticks)
        return room

    def _generate_input(self):
        return tuple(
            self.rng.randint(self.config.min_value, self.config.max_value)
            for _ in range(self.config.array_length)
        )

    # Countdown phase

    def _countdown(self, room, round_number, remaining):
        finished = False
        with room.lock:
            if room.round_number != round_number or room.phase != Phase.COUNTDOWN:
                return
            self.channel.to_room(room.id, 'countdownTick', remaining)
            if remaining > 0:
                self._timers[room.id] = self.scheduler.call_later(
                    self.config.tick_seconds, self._countdown, room, round_number, remaining - 1)
                return
            finished = self._begin_running(room)
        if finished:
            self.registry.discard_if_empty(room.id)

    def _begin_running(self, room):
        room.phase = Phase.RUNNING
        logger.info("Room %s round %d: running with %d participant(s)",
                    room.id, room.round_number, len(room.participants))
        self.channel.to_room(room.id, 'battleStart', list(room.test_input))
        self._timers[room.id] = self.scheduler.call_later(
            self.config.round_timeout_ms / 1000, self._round_timeout, room, room.round_number)
        if self._round_complete(room):
            self._finish_round(room)
            return True
        return False

    # Running phase

    def submit(self, participant_id, code):
        """Dispatch a submission; returns a Future resolving to its outcome."""
        room = self.registry.room_of(participant_id)
        with room.lock:
            if room.phase != Phase.RUNNING:
                raise InvalidPhaseTransition(room.id, room.phase.value, 'submit')
            if participant_id in room.outcomes:
                raise DuplicateSubmission(participant_id)
            room.outcomes[participant_id] = None
            round_number = room.round_number
            test_input = room.test_input
        logger.debug("Room %s round %d: dispatching submission from %s",
                     room.id, round_number, participant_id)
        return self.pool.submit(self._run_submission, room, round_number, participant_id, code, test_input)

    def _run_submission(self, room, round_number, participant_id, code, test_input):
        try:
            outcome = self.executor.execute(
                participant_id, code, test_input, self.config.submission_timeout_ms)
        except Exception as exc:
            logger.exception("Sandbox failed for %s in room %s", participant_id, room.id)
            outcome = ExecutionOutcome.failure(
                participant_id, self.config.submission_timeout_ms, RuntimeFault.kind, str(exc))
        self._merge_outcome(room, round_number, outcome)
        return outcome

    def _merge_outcome(self, room, round_number, outcome):
        participant_id = outcome.participant_id
        finished = False
        with room.lock:
            pending = participant_id in room.outcomes and room.outcomes[participant_id] is None
            if room.round_number != round_number or room.phase != Phase.RUNNING or not pending:
                logger.info("Room %s: discarding late outcome from %s", room.id, participant_id)
                return False
            room.outcomes[participant_id] = outcome
            if outcome.succeeded:
                self.channel.to_participant(participant_id, 'executionResult', {
                    'success': True,
                    'time': outcome.elapsed_ms,
                    'array': list(outcome.result),
                })
            else:
                self.channel.to_participant(participant_id, 'executionResult', {
                    'success': False,
                    'kind': outcome.failure_kind,
                    'error': outcome.failure_reason,
                })
                self.channel.to_participant(participant_id, 'executionFailure', outcome.failure_reason)
            if self._round_complete(room):
                self._finish_round(room)
                finished = True
        if finished:
            self.registry.discard_if_empty(room.id)
        return True

    @staticmethod
    def _round_complete(room):
        return all(room.outcomes.get(pid) is not None for pid in room.participants)

    def _round_timeout(self, room, round_number):
        with room.lock:
            if room.round_number != round_number or room.phase != Phase.RUNNING:
                return
            logger.info("Room %s round %d: round timeout", room.id, round_number)
            self._finish_round(room)
        self.registry.discard_if_empty(room.id)

    # Scoring

    def _finish_round(self, room):
        timer = self._timers.pop(room.id, None)
        if timer is not None:
            timer.cancel()
        room.phase = Phase.SCORED

        roster = dict(room.roster)
        for pid, participant in room.participants.items():
            roster.setdefault(pid, participant.display_name)
        outcomes = []
        for pid in roster:
            outcome = room.outcomes.get(pid)
            if outcome is None:
                outcome = ExecutionOutcome.failure(
                    pid, self.config.round_timeout_ms, NO_SUBMISSION_KIND, NO_SUBMISSION)
            outcomes.append(outcome)

        results = aggregate(room.test_input, outcomes, self.config.round_timeout_ms, roster)
        self.channel.to_room(room.id, 'battleResults', [r.to_dict() for r in results])
        logger.info("Room %s round %d: scored %d result(s)", room.id, room.round_number, len(results))

        room.last_results = results
        room.test_input = None
        room.outcomes = {}
        room.roster = {}
        room.phase = Phase.IDLE
        room.touch()
        return results

    def shutdown(self):
        for timer in list(self._timers.values()):
            timer.cancel()
        self._timers.clear()
        self.pool.shutdown(wait=False, cancel_futures=True)
