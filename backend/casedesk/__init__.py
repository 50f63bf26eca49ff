from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import atexit
import logging.config

from .config.settings import load_settings
from .errors import WorkflowError

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def configure_logging(level: str):
    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'default': {
                'format': '%(asctime)s %(levelname)s [%(name)s] %(message)s',
            },
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'default',
            },
        },
        'root': {'handlers': ['console'], 'level': level},
        'loggers': {
            'casedesk': {'level': level},
        },
    })


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config.update(load_settings())
    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    configure_logging(app.config['LOG_LEVEL'])

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    from .routes.iam import iam_bp
    from .routes.tasks import tasks_bp  # staff work surface
    from .routes.queue import queue_bp  # queue management
    from .routes.routing import routing_bp  # routing rule registry
    app.register_blueprint(iam_bp, url_prefix='/iam')
    app.register_blueprint(tasks_bp, url_prefix='/tasks')
    app.register_blueprint(queue_bp, url_prefix='/queue')
    app.register_blueprint(routing_bp, url_prefix='/routing')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    @app.errorhandler(WorkflowError)
    def handle_workflow_error(e):  # type: ignore
        return {
            'error': {
                'status': e.status_code,
                'title': e.title,
                'detail': e.reason,
                'code': e.code,
            }
        }, e.status_code

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                    'code': 'http_error',
                }
            }
            return payload, e.code
        app.logger.exception('Unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error',
                'code': 'internal_error',
            }
        }, 500

    if app.config['SCHEDULER_ENABLED']:
        from .tasks.auto_return import start_scheduler, shutdown_scheduler
        scheduler = start_scheduler(app)
        app.extensions['casedesk.scheduler'] = scheduler
        atexit.register(shutdown_scheduler, scheduler)

    return app


def get_db():
    return SessionLocal()


def remove_db():
    if SessionLocal is not None:
        SessionLocal.remove()
