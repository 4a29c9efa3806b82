from partybox.app import create_app, socketio
import atexit
import os
import threading
import webbrowser

app = create_app()
atexit.register(app.extensions["partybox"].shutdown)

if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    if os.getenv("OPEN_BROWSER", "").lower() in ("1", "true", "yes"):
        threading.Timer(1.5, webbrowser.open, args=(f"http://localhost:{port}/player",)).start()
    socketio.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=port,
        debug=os.getenv("DEBUG", "").lower() in ("1", "true", "yes"),
        use_reloader=False,
        allow_unsafe_werkzeug=True,
    )
