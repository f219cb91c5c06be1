import os
import sys
from types import SimpleNamespace

import pytest
from flask_login import FlaskLoginClient

# Ensure the backend root (containing `config` and the `waypoint` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from config import Config
from waypoint import create_app, db
from waypoint.models import User
from waypoint.services.instances import GameStructureService, InstanceService, LocationService, TeamService
from waypoint.services.structure import GameStructure


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SITE_URL = 'http://testserver'
    STRIPE_SECRET_KEY = 'sk_test_123'
    STRIPE_WEBHOOK_SECRET = 'whsec_test_123'
    LOG_LEVEL = 'DEBUG'


def _build_app(config_class, tmp_path):
    application = create_app(config_class)
    application.config['UPLOADS_DIR'] = str(tmp_path / 'uploads')
    application.test_client_class = FlaskLoginClient
    return application


@pytest.fixture()
def flask_app(tmp_path):
    application = _build_app(TestConfig, tmp_path)
    with application.app_context():
        # Ensure models are imported so tables are created
        import waypoint.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def file_app(tmp_path):
    """An app on a file database so several threads can share it."""
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'waypoint.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'check_same_thread': False, 'timeout': 30}}

    application = _build_app(FileConfig, tmp_path)
    with application.app_context():
        import waypoint.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


def _create_owner(free_credits=10, paid_credits=0):
    user = User(email='owner@example.com', name='Owner', free_credits=free_credits, paid_credits=paid_credits)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture()
def owner(flask_app):
    return _create_owner()


@pytest.fixture()
def file_owner(file_app):
    return _create_owner()


@pytest.fixture()
def owner_client(flask_app, owner):
    return flask_app.test_client(user=owner)


def _game_factory(owner):
    def _make(locations=3, points=10, settings=None, structure=None, started=True, code='TEAM'):
        instance = InstanceService().create_instance(owner.id, 'Test game')
        locs = [
            LocationService().create_location(instance.id, f'Location {i}', -45.87 + i * 0.001, 170.50,
                                              points=points)
            for i in range(locations)
        ]
        if settings:
            InstanceService().update_settings(instance.id, settings)
        if structure is not None:
            GameStructureService().save(instance.id, GameStructure.from_dict(structure([loc.id for loc in locs])))
        team = TeamService().create_team(instance.id, code)
        if started:
            team.has_started = True
            db.session.commit()
        return SimpleNamespace(instance=instance, locations=locs, team=team)

    return _make


@pytest.fixture()
def make_game(flask_app, owner):
    """Build an instance with locations and one team.

    ``structure`` is an optional callable receiving the location ids and
    returning the structure dict to save.
    """
    return _game_factory(owner)


@pytest.fixture()
def make_file_game(file_app, file_owner):
    return _game_factory(file_owner)


def group(group_id, location_ids, sub_groups=(), **options):
    """Structure dict for one visible group."""
    data = {
        'id': group_id,
        'name': group_id,
        'color': 'primary',
        'location_ids': list(location_ids),
        'sub_groups': list(sub_groups),
    }
    data.update(options)
    return data


def root(*sub_groups):
    return {'id': 'root', 'is_root': True, 'location_ids': [], 'sub_groups': list(sub_groups)}


@pytest.fixture()
def structure_helpers():
    return SimpleNamespace(group=group, root=root)
