"""Block registry and the shared behaviour of every block type.

A block row stores its type-specific settings in the opaque ``data``
column. ``create_from_base_block`` turns a row into the typed object that
knows how to read admin form input (``update_block_data``) and how to judge
a team's input (``validate_player_input``). Form input is always the
multi-dict shape ``{key: [values]}``.
"""
import copy
from enum import Enum
from typing import Dict, List, Optional

from waypoint.errors import InvalidInput

CONTEXT_LOCATION_CONTENT = 'location_content'
CONTEXT_LOCATION_CLUES = 'location_clues'
CONTEXT_LOBBY = 'lobby'
CONTEXT_FINISH = 'finish'
CONTEXTS = (CONTEXT_LOCATION_CONTENT, CONTEXT_LOCATION_CLUES, CONTEXT_LOBBY, CONTEXT_FINISH)


class Mode(Enum):
    LIVE = 'live'
    PREVIEW = 'preview'


_registry: Dict[str, tuple] = {}
_context_registry: Dict[str, List[str]] = {}


def register(*contexts):
    def decorator(cls):
        _registry[cls.type] = (cls, tuple(contexts))
        for context in contexts:
            _context_registry.setdefault(context, []).append(cls.type)
        return cls
    return decorator


def first_value(form: dict, key: str, default=None):
    values = form.get(key)
    if not values:
        return default
    return values[0]


def parse_points(form: dict, default=None) -> Optional[int]:
    raw = first_value(form, 'points')
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise InvalidInput('points must be an integer')


def is_checked(form: dict, key: str) -> bool:
    return first_value(form, key) in ('on', 'true')


class BaseBlock:
    type = ''
    name = ''
    description = ''
    requires_validation = False
    # Keys persisted in the data column, with their defaults
    defaults: dict = {}
    # Keys of the data column that players never see
    secret_fields: tuple = ()

    def __init__(self, id='', owner_id='', ordering=0, points=0, data=None):
        self.id = id
        self.owner_id = owner_id
        self.ordering = ordering
        self.points = points or 0
        self.parse_data(data or {})

    def parse_data(self, data: dict) -> None:
        for key, default in self.defaults.items():
            setattr(self, key, copy.deepcopy(data.get(key, default)))

    def get_data(self) -> dict:
        return {key: copy.deepcopy(getattr(self, key)) for key in self.defaults}

    def update_block_data(self, form: dict) -> None:
        points = parse_points(form)
        if points is not None:
            self.points = points

    def validate_player_input(self, state, form: dict):
        """Display-only blocks complete on any interaction."""
        state.is_complete = True
        return state

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'type': self.type,
            'name': self.name,
            'ordering': self.ordering,
            'points': self.points,
            'requires_validation': self.requires_validation,
            'data': self.get_data(),
        }

    def player_data(self, team_code: str, state=None) -> dict:
        data = self.get_data()
        for key in self.secret_fields:
            data.pop(key, None)
        return data

    def to_player_dict(self, team_code: str, state=None) -> dict:
        """What a team is shown; ``to_dict`` is the admin shape."""
        result = self.to_dict()
        result['data'] = self.player_data(team_code, state)
        return result


def _lookup(block_type: str):
    registration = _registry.get(block_type)
    if registration is None:
        raise InvalidInput(f'block type {block_type} not found')
    return registration


def create_from_base_block(base) -> BaseBlock:
    """Build the typed block for a stored ``Block`` row."""
    cls, _ = _lookup(base.type)
    return cls(id=base.id, owner_id=base.owner_id, ordering=base.ordering,
               points=base.points, data=base.data)


def new_block_of_type(block_type: str) -> BaseBlock:
    cls, _ = _lookup(block_type)
    return cls()


def get_blocks_for_context(context: str) -> List[BaseBlock]:
    return [_registry[block_type][0]() for block_type in _context_registry.get(context, [])]


def can_block_be_used_in_context(block_type: str, context: str) -> bool:
    registration = _registry.get(block_type)
    return registration is not None and context in registration[1]


def registered_types() -> List[str]:
    return sorted(_registry)
