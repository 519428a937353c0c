from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:8080",
    "http://127.0.0.1:8080",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from arena.main import main
    flask_app.register_blueprint(main)

    from arena.api.competitions import competitions
    flask_app.register_blueprint(competitions, url_prefix='/api/competitions')

    # Register Socket.IO event handlers
    # Importing here ensures the handlers bind to the initialized socketio instance
    from arena.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    # One coordinator per app: it owns the per-session state machines and countdowns
    from arena.services.contest.submission import SubmissionCoordinator
    flask_app.extensions['submission_coordinator'] = SubmissionCoordinator.from_app(flask_app)

    # Flask-Login loads the participant behind the signed session cookie
    from arena.models import Participant

    @login_manager.user_loader
    def load_participant(participant_id):
        return db.session.get(Participant, int(participant_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Login with your LAN ID first', 'code': 'Unauthenticated'}), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from arena.models import Competition, Question
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed one ongoing competition with two challenges
            comp = Competition(
                name='Prompt Engineering Sprint',
                description='Write a prompt, capture the model output, submit both files.',
                time_limit_minutes=15,
                status='ongoing',
            )
            db.session.add(comp)
            db.session.flush()
            db.session.add(Question(
                competition_id=comp.id,
                title='Summarize a changelog',
                description='Produce a prompt that turns the attached changelog into release notes.',
                attachments=[{'name': 'changelog.txt', 'url': '/static/changelog.txt'}],
            ))
            db.session.add(Question(
                competition_id=comp.id,
                title='Extract action items',
                description='Produce a prompt that extracts action items from a meeting transcript.',
                attachments=[],
            ))
            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
