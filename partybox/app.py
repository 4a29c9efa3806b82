# partybox/app.py
from flask import Flask
from flask_cors import CORS
import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from .models.config import ConfigStore
from .models.state import StateStore
from .services.jukebox import Jukebox
from .utils.constants import ADVANCED_CONFIG_FILE, DOWNLOADS_DIR, SEPARATED_DIR
from .utils.extensions import socketio

load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if os.getenv("LOG_LEVEL", "").upper() == "DEBUG" else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(os.getenv("LOG_FILE", "app.log")),
    ],
)
logger = logging.getLogger(__name__)

# Import and register blueprints / socket handlers
from .routes.static import static_bp
from .routes.system import system_bp
from .routes import socket_events  # noqa: F401


def create_app(overrides=None):
    """Build the Flask app, the shared state store and the pipeline around it.

    ``overrides`` is merged into ``app.config``; tests use it to point the
    data directories at a temp folder and to swap in fake process spawners
    (SPAWN), timers (TIMER) and the YoutubeDL class used for lookups (YDL_FACTORY).
    """
    app = Flask(__name__)
    data_dir = Path(os.getenv("PARTYBOX_HOME", os.getcwd()))
    app.config.update(
        DATA_DIR=data_dir,
        DOWNLOAD_DIR=data_dir / DOWNLOADS_DIR,
        SEPARATED_DIR=data_dir / SEPARATED_DIR,
        ADVANCED_CONFIG_PATH=data_dir / ADVANCED_CONFIG_FILE,
        STATIC_DIR=Path(__file__).parent / "static",
        PORT=int(os.getenv("PORT", 5000)),
        SPAWN=None,
        TIMER=None,
        YDL_FACTORY=None,
    )
    if overrides:
        app.config.update(overrides)

    for key in ("DOWNLOAD_DIR", "SEPARATED_DIR"):
        app.config[key] = Path(app.config[key])
        app.config[key].mkdir(parents=True, exist_ok=True)

    # Setup CORS
    CORS(app)

    config = ConfigStore(app.config["ADVANCED_CONFIG_PATH"])
    config.load()
    store = StateStore()
    jukebox = Jukebox.build(
        store,
        config,
        data_dir=app.config["DATA_DIR"],
        download_dir=app.config["DOWNLOAD_DIR"],
        separated_dir=app.config["SEPARATED_DIR"],
        spawn=app.config["SPAWN"],
        timer=app.config["TIMER"],
        ydl_factory=app.config["YDL_FACTORY"],
    )
    app.extensions["partybox"] = jukebox

    socketio.init_app(app, cors_allowed_origins="*", async_mode="threading")
    store.set_emitter(socketio.emit)

    app.register_blueprint(static_bp)
    app.register_blueprint(system_bp)

    logger.info(f"Data directory: {app.config['DATA_DIR']}")
    return app
