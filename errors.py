class BattleError(Exception):
    """Base class for everything the battle core reports to a caller."""

    kind = "battle_error"

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'kind': self.kind, 'message': self.message}


# Execution failures: recoverable, recorded on the offending participant's outcome.

class ExecutionFailure(BattleError):
    kind = "execution_failure"


class InvalidSubmission(ExecutionFailure):
    kind = "invalid_submission"


class ExecutionTimeout(ExecutionFailure):
    kind = "execution_timeout"

    def __init__(self, timeout_ms):
        super().__init__(f"Time limit exceeded ({timeout_ms}ms)")
        self.timeout_ms = timeout_ms


class RuntimeFault(ExecutionFailure):
    kind = "runtime_fault"


# API errors: rejected at the boundary, no state change.

class InvalidPhaseTransition(BattleError):
    kind = "invalid_phase_transition"

    def __init__(self, room_id, phase, action):
        super().__init__(f"Cannot {action} in room {room_id!r} while {phase}")
        self.room_id = room_id
        self.phase = phase
        self.action = action


class RoomNotFound(BattleError):
    kind = "room_not_found"

    def __init__(self, room_id):
        super().__init__(f"Room not found: {room_id!r}")
        self.room_id = room_id


class InvalidRoomId(BattleError, ValueError):
    kind = "invalid_room_id"

    def __init__(self, room_id):
        super().__init__(f"Invalid room id: {room_id!r}")
        self.room_id = room_id


class NotInRoom(BattleError):
    kind = "not_in_room"

    def __init__(self, participant_id):
        super().__init__(f"Participant {participant_id!r} has not joined a room")
        self.participant_id = participant_id


class DuplicateSubmission(BattleError):
    kind = "duplicate_submission"

    def __init__(self, participant_id):
        super().__init__(f"Participant {participant_id!r} already submitted this round")
        self.participant_id = participant_id
