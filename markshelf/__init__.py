from flask import Flask

from markshelf.api import api_bp
from markshelf.auth import auth_bp
from markshelf.config import Config
from markshelf.extensions import db, login_manager, migrate
from markshelf.jobs.scheduler import start_scheduler


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        print("Initialized Markshelf database.")

    with app.app_context():
        db.create_all()

    start_scheduler(app)
    return app
