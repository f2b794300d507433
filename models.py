import enum
import random
import threading
import time
from dataclasses import dataclass
from typing import Optional, Tuple

DEFAULT_CODE = "def sort(arr):\n    return sorted(arr)\n"


class Phase(str, enum.Enum):
    IDLE = 'idle'
    COUNTDOWN = 'countdown'
    RUNNING = 'running'
    SCORED = 'scored'


def generate_display_name():
    return f"Gladiator-{random.randint(0, 999)}"


class Participant:
    def __init__(self, participant_id, display_name, room_id):
        self.id = participant_id
        self.display_name = display_name or generate_display_name()
        self.room_id = room_id  # lookup key only

    def to_dict(self):
        return {'id': self.id, 'displayName': self.display_name}


class Room:
    def __init__(self, room_id, code=DEFAULT_CODE):
        self.id = room_id
        self.code = code
        self.participants = {}  # {participant_id: Participant}
        self.phase = Phase.IDLE
        self.test_input = None  # tuple of ints while a round is active
        self.round_number = 0
        self.outcomes = {}  # {participant_id: ExecutionOutcome | None}, None = dispatched
        self.roster = {}  # {participant_id: display_name} of everyone in the current round
        self.last_results = []
        self.lock = threading.RLock()
        self.created_at = time.time()
        self.last_activity = time.time()

    def touch(self):
        self.last_activity = time.time()

    @property
    def is_active(self):
        return self.phase != Phase.IDLE

    def participant_list(self):
        return [p.to_dict() for p in self.participants.values()]

    def snapshot(self):
        with self.lock:
            return {
                'id': self.id,
                'phase': self.phase.value,
                'round': self.round_number,
                'participants': self.participant_list(),
                'lastResults': [r.to_dict() for r in self.last_results],
                'createdAt': self.created_at,
                'lastActivity': self.last_activity,
            }


@dataclass(frozen=True)
class ExecutionOutcome:
    participant_id: str
    elapsed_ms: int
    result: Optional[Tuple[int, ...]] = None
    failure_kind: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def succeeded(self):
        return self.failure_reason is None

    @classmethod
    def success(cls, participant_id, elapsed_ms, result):
        return cls(participant_id=participant_id, elapsed_ms=elapsed_ms, result=tuple(result))

    @classmethod
    def failure(cls, participant_id, elapsed_ms, kind, reason):
        return cls(participant_id=participant_id, elapsed_ms=elapsed_ms,
                   failure_kind=kind, failure_reason=reason)


@dataclass(frozen=True)
class BattleResult:
    participant_id: str
    elapsed_ms: int
    correct: bool
    rank: int
    display_name: Optional[str] = None
    failure_reason: Optional[str] = None

    def to_dict(self):
        return {
            'participantId': self.participant_id,
            'displayName': self.display_name,
            'elapsedMillis': self.elapsed_ms,
            'correct': self.correct,
            'rank': self.rank,
            'failureReason': self.failure_reason,
        }
