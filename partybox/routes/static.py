from flask import Blueprint, abort, current_app, redirect, send_from_directory

static_bp = Blueprint("static", __name__)


def _serve_page(filename):
    static_dir = current_app.config["STATIC_DIR"]
    if not (static_dir / filename).is_file():
        abort(404)
    return send_from_directory(static_dir, filename)


@static_bp.route("/", methods=["GET"])
def index():
    return _serve_page("controller.html")


@static_bp.route("/player", methods=["GET"])
def player_html():
    return _serve_page("player.html")


@static_bp.route("/player.html", methods=["GET"])
def player_legacy():
    return redirect("/player")


@static_bp.route("/js/<path:filename>")
def serve_js(filename):
    return send_from_directory(current_app.config["STATIC_DIR"] / "js", filename)


@static_bp.route("/downloads/<path:filename>", methods=["GET"])
def download_file(filename):
    response = send_from_directory(current_app.config["DOWNLOAD_DIR"], filename, conditional=True)
    response.headers["Accept-Ranges"] = "bytes"
    return response
