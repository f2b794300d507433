"""
Room-scoped message delivery.

The orchestrator only talks to a BroadcastChannel. SocketIOChannel maps it
onto Flask-SocketIO rooms, RecordingChannel keeps everything in memory.
"""
import threading


class BroadcastChannel:
    def to_room(self, room_id, event, payload=None, skip=None):
        raise NotImplementedError

    def to_participant(self, participant_id, event, payload=None):
        raise NotImplementedError

    def attach(self, participant_id, room_id):
        pass

    def detach(self, participant_id, room_id):
        pass


class SocketIOChannel(BroadcastChannel):
    def __init__(self, socketio):
        self.socketio = socketio

    def to_room(self, room_id, event, payload=None, skip=None):
        self.socketio.emit(event, payload, to=room_id, skip_sid=skip)

    def to_participant(self, participant_id, event, payload=None):
        # Every connection is addressable as a room named after its sid.
        self.socketio.emit(event, payload, to=participant_id)

    def attach(self, participant_id, room_id):
        self.socketio.server.enter_room(participant_id, room_id, namespace='/')

    def detach(self, participant_id, room_id):
        self.socketio.server.leave_room(participant_id, room_id, namespace='/')


class RecordingChannel(BroadcastChannel):
    """Keeps (target, event, payload) tuples; room targets are ('room', id, skip)."""

    def __init__(self):
        self.messages = []
        self.members = {}  # {room_id: set(participant_id)}
        self._lock = threading.Lock()

    def to_room(self, room_id, event, payload=None, skip=None):
        with self._lock:
            self.messages.append((('room', room_id, skip), event, payload))

    def to_participant(self, participant_id, event, payload=None):
        with self._lock:
            self.messages.append((('participant', participant_id), event, payload))

    def attach(self, participant_id, room_id):
        with self._lock:
            self.members.setdefault(room_id, set()).add(participant_id)

    def detach(self, participant_id, room_id):
        with self._lock:
            self.members.get(room_id, set()).discard(participant_id)

    def events(self, event=None, room_id=None, participant_id=None):
        """Payloads of matching messages, in emission order."""
        with self._lock:
            messages = list(self.messages)
        found = []
        for target, name, payload in messages:
            if event is not None and name != event:
                continue
            if room_id is not None and not (target[0] == 'room' and target[1] == room_id):
                continue
            if participant_id is not None and not (target[0] == 'participant' and target[1] == participant_id):
                continue
            found.append(payload)
        return found

    def names(self, room_id=None):
        with self._lock:
            messages = list(self.messages)
        return [name for target, name, _ in messages
                if room_id is None or (target[0] == 'room' and target[1] == room_id)]
