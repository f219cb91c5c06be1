from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
import click
from config import Config

db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    db.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    from waypoint.errors import register_error_handlers
    register_error_handlers(flask_app)

    from waypoint.api.players import players
    flask_app.register_blueprint(players, url_prefix='/api/play')

    from waypoint.api.admin import admin
    flask_app.register_blueprint(admin, url_prefix='/api/admin')

    from waypoint.api.webhooks import webhooks
    flask_app.register_blueprint(webhooks, url_prefix='/api/webhooks')

    from waypoint.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, user_id)

    @login_manager.unauthorized_handler
    def unauthorized():
        from waypoint.errors import NotAuthenticated
        raise NotAuthenticated()

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from waypoint.services.instances import InstanceService, LocationService
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            user = User(email='demo@example.com', name='Demo', free_credits=10)
            db.session.add(user)
            db.session.commit()

            instance = InstanceService().create_instance(user.id, 'Demo game')
            locations = LocationService()
            for i, name in enumerate(['Library', 'Clock tower', 'Fountain']):
                locations.create_location(instance.id, name, -45.86 + i * 0.001, 170.51, points=10)
            click.echo('Database has been reset and seeded!')

    @click.command('credits-topup')
    def credits_topup_command():
        """Tops up free credits for the current month."""
        from waypoint.services.credits import MonthlyCreditTopupService
        with flask_app.app_context():
            MonthlyCreditTopupService().top_up_credits()
            click.echo('Monthly top-up finished.')

    @click.command('purchases-cleanup')
    def purchases_cleanup_command():
        """Deletes stale pending and failed purchases."""
        from waypoint.services.credits import StalePurchaseCleanupService
        with flask_app.app_context():
            deleted = StalePurchaseCleanupService().cleanup_stale_purchases()
            click.echo(f'Deleted {deleted} stale purchases.')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(credits_topup_command)
    flask_app.cli.add_command(purchases_cleanup_command)

    return flask_app
