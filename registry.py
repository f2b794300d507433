import logging
import threading

from errors import InvalidRoomId, NotInRoom, RoomNotFound
from models import DEFAULT_CODE, Participant, Room

logger = logging.getLogger(__name__)


class RoomRegistry:
    """Owns the room id -> Room mapping and the participant -> room index.

    Lock order is always registry lock first, then a room lock. Callers that
    hold a room lock must release it before calling back into the registry.

    Empty rooms are garbage-collected: when the last participant leaves an
    idle room it is dropped, and a room emptied mid-round is dropped once the
    round has been scored (see discard_if_empty).
    """

    def __init__(self, default_code=DEFAULT_CODE):
        self.default_code = default_code
        self._rooms = {}  # {room_id: Room}
        self._participant_rooms = {}  # {participant_id: room_id}
        self._lock = threading.Lock()

    @staticmethod
    def check_room_id(room_id):
        if not isinstance(room_id, str) or not room_id.strip():
            raise InvalidRoomId(room_id)

    def get_or_create(self, room_id):
        self.check_room_id(room_id)
        with self._lock:
            return self._get_or_create_locked(room_id)

    def _get_or_create_locked(self, room_id):
        room = self._rooms.get(room_id)
        if room is None:
            room = Room(room_id, code=self.default_code)
            self._rooms[room_id] = room
            logger.info("Room %s created", room_id)
        return room

    def get(self, room_id):
        self.check_room_id(room_id)
        with self._lock:
            room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        return room

    def remove(self, room_id):
        """Drop the room if no round is active. Returns True when removed."""
        self.check_room_id(room_id)
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                raise RoomNotFound(room_id)
            with room.lock:
                if room.is_active:
                    return False
                for participant_id in room.participants:
                    self._participant_rooms.pop(participant_id, None)
                room.participants.clear()
            del self._rooms[room_id]
        logger.info("Room %s removed", room_id)
        return True

    def discard_if_empty(self, room_id):
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return False
            with room.lock:
                if room.participants or room.is_active:
                    return False
            del self._rooms[room_id]
        logger.info("Room %s discarded (empty)", room_id)
        return True

    def __contains__(self, room_id):
        with self._lock:
            return room_id in self._rooms

    # Participants

    def join(self, room_id, participant_id, display_name=None):
        """Attach a participant to a room, creating the room on first join."""
        self.check_room_id(room_id)
        with self._lock:
            current = self._participant_rooms.get(participant_id)
            if current is not None and current != room_id:
                self._leave_locked(participant_id)
            room = self._get_or_create_locked(room_id)
            with room.lock:
                participant = room.participants.get(participant_id)
                if participant is None:
                    participant = Participant(participant_id, display_name, room_id)
                    room.participants[participant_id] = participant
                elif display_name:
                    participant.display_name = display_name
                room.touch()
            self._participant_rooms[participant_id] = room_id
        logger.info("Participant %s joined room %s", participant_id, room_id)
        return room, participant

    def leave(self, participant_id):
        """Detach a participant. Returns (room, participant) or (None, None)."""
        with self._lock:
            return self._leave_locked(participant_id)

    def _leave_locked(self, participant_id):
        room_id = self._participant_rooms.pop(participant_id, None)
        if room_id is None:
            return None, None
        room = self._rooms.get(room_id)
        if room is None:
            return None, None
        with room.lock:
            participant = room.participants.pop(participant_id, None)
            room.touch()
            drop = not room.participants and not room.is_active
        if drop:
            del self._rooms[room_id]
            logger.info("Room %s discarded (empty)", room_id)
        logger.info("Participant %s left room %s", participant_id, room_id)
        return room, participant

    def room_id_of(self, participant_id):
        with self._lock:
            return self._participant_rooms.get(participant_id)

    def room_of(self, participant_id):
        with self._lock:
            room_id = self._participant_rooms.get(participant_id)
            room = self._rooms.get(room_id) if room_id is not None else None
        if room is None:
            raise NotInRoom(participant_id)
        return room
