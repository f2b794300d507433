import functools
import logging

from flask import Flask, abort, jsonify, render_template, request
from flask_socketio import SocketIO, emit

import config as settings
from channel import SocketIOChannel
from config import BattleConfig
from errors import BattleError, RoomNotFound
from orchestrator import SessionOrchestrator
from registry import RoomRegistry
from sandbox import SandboxExecutor

logger = logging.getLogger(__name__)


def configure_logging(level=None):
    logging.basicConfig(
        level=level or settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _reports_errors(handler):
    """Send BattleErrors back to the calling connection instead of raising."""
    @functools.wraps(handler)
    def wrapper(*args, **kwargs):
        try:
            return handler(*args, **kwargs)
        except BattleError as exc:
            logger.info("Rejected %s from %s: %s", handler.__name__, request.sid, exc.message)
            emit('battleError', exc.to_dict())
    return wrapper


def _unpack_join(data, display_name):
    # Accepts {'roomId': ..., 'displayName': ...} or positional (room_id, name).
    if isinstance(data, dict):
        return data.get('roomId'), data.get('displayName')
    return data, display_name


def create_app(battle_config=None, executor=None, scheduler=None, pool=None, rng=None):
    battle_config = battle_config or BattleConfig.from_env()
    debug = settings.LOG_LEVEL == 'DEBUG'

    app = Flask(__name__)
    app.config['SECRET_KEY'] = settings.SECRET_KEY
    socketio = SocketIO(app, async_mode='threading', logger=debug, engineio_logger=debug,
                        ping_timeout=60, ping_interval=25)

    registry = RoomRegistry()
    orchestrator = SessionOrchestrator(
        registry,
        SocketIOChannel(socketio),
        executor or SandboxExecutor(battle_config),
        config=battle_config,
        scheduler=scheduler,
        pool=pool,
        rng=rng,
    )
    app.extensions['sort_battle'] = orchestrator

    # HTTP

    @app.route('/')
    def index():
        return render_template('index.html')

    @app.route('/battle/<room_id>')
    def battle(room_id):
        return render_template('battle.html', room_id=room_id)

    @app.route('/rooms/<room_id>')
    def room_state(room_id):
        try:
            room = registry.get(room_id)
        except RoomNotFound:
            abort(404)
        return jsonify(room.snapshot())

    # Socket events

    @socketio.on('connect')
    def handle_connect():
        logger.debug("Client connected: %s", request.sid)
        emit('connected', {'sid': request.sid})

    @socketio.on('disconnect')
    def handle_disconnect(*args):
        logger.debug("Client disconnected: %s", request.sid)
        orchestrator.leave(request.sid)

    @socketio.on('join')
    @_reports_errors
    def handle_join(data=None, display_name=None):
        room_id, display_name = _unpack_join(data, display_name)
        room = orchestrator.join(room_id, request.sid, display_name)
        emit('roomJoined', room.snapshot())

    @socketio.on('codeChange')
    @_reports_errors
    def handle_code_change(text):
        if not isinstance(text, str):
            raise BattleError("codeChange expects the full source text")
        orchestrator.code_change(request.sid, text)

    @socketio.on('startBattle')
    @_reports_errors
    def handle_start_battle(*args):
        orchestrator.start_battle(request.sid)

    @socketio.on('submit')
    @_reports_errors
    def handle_submit(code):
        if not isinstance(code, str):
            raise BattleError("submit expects the source text")
        orchestrator.submit(request.sid, code)

    return app, socketio


def main():
    configure_logging()
    app, socketio = create_app()
    logger.info("Sort battle server on http://%s:%d", settings.HOST, settings.PORT)
    socketio.run(app, host=settings.HOST, port=settings.PORT, allow_unsafe_werkzeug=True)


if __name__ == '__main__':
    main()
