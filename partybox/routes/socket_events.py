import logging

from flask import current_app
from flask_socketio import emit

from ..utils.decorators import get_jukebox, payload_required, with_jukebox
from ..utils.errors import ConfigPersistFailure, ParseFailure
from ..utils.extensions import socketio
from ..utils.helpers import get_network_interfaces, get_wifi_ssid

logger = logging.getLogger(__name__)


@socketio.on("connect")
def handle_connect(auth=None):
    logger.info("Client connected")
    jukebox = get_jukebox()
    emit("sync_state", jukebox.store.snapshot())
    emit(
        "system_info",
        {
            "networks": get_network_interfaces(),
            "ssid": get_wifi_ssid(),
            "port": current_app.config.get("PORT"),
        },
    )


@socketio.on("disconnect")
def handle_disconnect(*_args):
    logger.info("Client disconnected")


@socketio.on("parse_url")
@payload_required(str)
@with_jukebox
def parse_url(jukebox, url):
    try:
        items = jukebox.parse_url(url)
    except ParseFailure as e:
        logger.warning(f"Parse failed: {e}")
        emit("error_msg", "Parse Error or No Content")
        return
    emit("parse_result", {"list": items})


@socketio.on("add_song")
@payload_required(dict)
@with_jukebox
def add_song(jukebox, data):
    try:
        jukebox.add_song(data.get("url"), data.get("requester"))
    except ParseFailure as e:
        logger.warning(f"Parse failed: {e}")
        emit("error_msg", "Parse Error")


@socketio.on("add_batch_songs")
@payload_required(dict)
@with_jukebox
def add_batch_songs(jukebox, data):
    songs = data.get("songs")
    if not isinstance(songs, list) or not songs:
        return
    jukebox.add_batch(songs, data.get("requester"))


@socketio.on("readd_history")
@payload_required(dict)
@with_jukebox
def readd_history(jukebox, item):
    jukebox.readd_history(item)


@socketio.on("next_song")
def next_song(data=None):
    manual = isinstance(data, dict) and bool(data.get("manual"))
    get_jukebox().next_song(manual=manual)


@socketio.on("manage_queue")
@payload_required(dict)
@with_jukebox
def manage_queue(jukebox, data):
    jukebox.manage_queue(data.get("action"), data.get("id"))


@socketio.on("set_auto_process")
def set_auto_process(enabled=False):
    get_jukebox().set_auto_process(enabled)


@socketio.on("shuffle_queue")
def shuffle_queue(*_args):
    get_jukebox().shuffle()


@socketio.on("control_action")
@payload_required(dict)
@with_jukebox
def control_action(jukebox, action):
    jukebox.control_action(action)


@socketio.on("player_tick")
@payload_required(dict)
@with_jukebox
def player_tick(jukebox, data):
    jukebox.player_tick(data)


@socketio.on("system_reset")
def system_reset(*_args):
    get_jukebox().system_reset()


@socketio.on("get_advanced_config")
def get_advanced_config(*_args):
    emit("advanced_config", get_jukebox().get_config())


@socketio.on("set_advanced_config")
@payload_required(dict)
@with_jukebox
def set_advanced_config(jukebox, config):
    try:
        saved = jukebox.save_config(config)
    except ConfigPersistFailure:
        emit("error_msg", "Failed to save advanced config")
        return
    emit("advanced_config", saved)
    emit("advanced_config_saved")


@socketio.on("reset_advanced_config")
def reset_advanced_config(*_args):
    try:
        config = get_jukebox().reset_config()
    except ConfigPersistFailure:
        emit("error_msg", "Failed to restore default settings")
        return
    emit("advanced_config", config)
    emit("advanced_config_saved")
