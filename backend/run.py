import os

from arena import create_app, socketio

app = create_app()

if __name__ == '__main__':
    # Countdowns live in memory; the serving (reloader child) process re-arms
    # them for sessions still open in the database
    if os.environ.get('WERKZEUG_RUN_MAIN') == 'true':
        with app.app_context():
            app.extensions['submission_coordinator'].recover_open_sessions(app)
    # Use SocketIO server to enable websockets in dev
    socketio.run(app, debug=True)
