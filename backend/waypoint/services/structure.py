"""Pure navigation logic over the declarative game structure.

A ``GameStructure`` is a tree. The root is an invisible container; each
visible group holds an ordered list of location ids followed by ordered
sub-groups. Position in those lists is the declaration order, there are no
explicit ordering fields.

Nothing in this module touches the database. Every function is a pure
function of its arguments, so the same tree, completed set and team code
give the same answer in every process.
"""
import hashlib
import uuid
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from waypoint.errors import InvalidStructure

COMPLETION_ALL = 'all'
COMPLETION_MINIMUM = 'minimum'
COMPLETION_TYPES = (COMPLETION_ALL, COMPLETION_MINIMUM)

ROUTE_FREE_ROAM = 'free_roam'
ROUTE_ORDERED = 'ordered'
ROUTE_RANDOM = 'random'
ROUTE_SCAVENGER_HUNT = 'scavenger_hunt'
ROUTING_STRATEGIES = (ROUTE_FREE_ROAM, ROUTE_ORDERED, ROUTE_RANDOM, ROUTE_SCAVENGER_HUNT)

NAV_MAP = 'map'
NAV_MAP_NAMES = 'map_names'
NAV_NAMES = 'names'
NAV_CUSTOM = 'custom'
NAV_TASKS = 'tasks'
NAVIGATION_MODES = (NAV_MAP, NAV_MAP_NAMES, NAV_NAMES, NAV_CUSTOM, NAV_TASKS)

# Reasons returned by get_next_group
REASON_GROUP_INCOMPLETE = 'group_incomplete'
REASON_AUTO_ADVANCE_DISABLED = 'auto_advance_disabled'
REASON_NEXT_SIBLING = 'next_sibling'
REASON_PARENT_NEXT_SIBLING = 'parent_next_sibling'
REASON_ALL_COMPLETE = 'all_complete'
REASON_NO_PARENT = 'no_parent'
REASON_GROUP_NOT_FOUND = 'group_not_found'


@dataclass
class GameStructure:
    id: str
    name: str = ''
    color: str = ''
    routing: str = ROUTE_FREE_ROAM
    navigation: str = NAV_NAMES
    completion_type: str = COMPLETION_ALL
    minimum_required: int = 0
    max_next: int = 0
    auto_advance: bool = True
    is_root: bool = False
    location_ids: List[str] = field(default_factory=list)
    sub_groups: List['GameStructure'] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['GameStructure']:
        if not data:
            return None
        return cls(
            id=data.get('id', ''),
            name=data.get('name', ''),
            color=data.get('color', ''),
            routing=data.get('routing') or ROUTE_FREE_ROAM,
            navigation=data.get('navigation') or NAV_NAMES,
            completion_type=data.get('completion_type') or COMPLETION_ALL,
            minimum_required=int(data.get('minimum_required') or 0),
            max_next=int(data.get('max_next') or 0),
            auto_advance=bool(data.get('auto_advance', True)),
            is_root=bool(data.get('is_root', False)),
            location_ids=list(data.get('location_ids') or []),
            sub_groups=[cls.from_dict(g) for g in (data.get('sub_groups') or [])],
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'color': self.color,
            'routing': self.routing,
            'navigation': self.navigation,
            'completion_type': self.completion_type,
            'minimum_required': self.minimum_required,
            'max_next': self.max_next,
            'auto_advance': self.auto_advance,
            'is_root': self.is_root,
            'location_ids': list(self.location_ids),
            'sub_groups': [g.to_dict() for g in self.sub_groups],
        }

    @classmethod
    def new_root(cls, first_group_name: str = 'Locations') -> 'GameStructure':
        """A root holding one visible free-roam group, the shape new games start with."""
        return cls(
            id=str(uuid.uuid4()),
            is_root=True,
            sub_groups=[cls(id=str(uuid.uuid4()), name=first_group_name, color='primary')],
        )


def iter_groups(root: Optional[GameStructure]) -> Iterator[GameStructure]:
    """Depth-first walk in declaration order, root included."""
    if root is None:
        return
    yield root
    for sub in root.sub_groups:
        yield from iter_groups(sub)


def find_group_by_id(root: Optional[GameStructure], group_id: str) -> Optional[GameStructure]:
    for group in iter_groups(root):
        if group.id == group_id:
            return group
    return None


def find_group_containing_location(root: Optional[GameStructure], location_id: str) -> Optional[GameStructure]:
    for group in iter_groups(root):
        if location_id in group.location_ids:
            return group
    return None


def find_parent_and_index(root: GameStructure, group_id: str) -> Tuple[Optional[GameStructure], int]:
    for group in iter_groups(root):
        for i, sub in enumerate(group.sub_groups):
            if sub.id == group_id:
                return group, i
    return None, -1


def get_first_visible_group(root: Optional[GameStructure]) -> Optional[GameStructure]:
    if root is None or not root.is_root or not root.sub_groups:
        return None
    return root.sub_groups[0]


def get_all_location_ids(group: Optional[GameStructure]) -> List[str]:
    """Flatten location ids in declaration order: own ids, then sub-groups."""
    if group is None:
        return []
    ids = list(group.location_ids)
    for sub in group.sub_groups:
        ids.extend(get_all_location_ids(sub))
    return ids


def _completed_count(group: GameStructure, completed: Iterable[str]) -> int:
    done = set(completed)
    return sum(1 for loc_id in group.location_ids if loc_id in done)


def is_completed(group: Optional[GameStructure], completed: Iterable[str]) -> bool:
    """Whether the group's completion rule is met.

    Groups without locations are never complete by their own rule.
    """
    if group is None or not group.location_ids:
        return False
    count = _completed_count(group, completed)
    if group.completion_type == COMPLETION_ALL:
        return count == len(group.location_ids)
    if group.completion_type == COMPLETION_MINIMUM:
        return count >= group.minimum_required
    return False


def is_group_completed(structure: Optional[GameStructure], group_id: str, completed: Iterable[str]) -> bool:
    return is_completed(find_group_by_id(structure, group_id), completed)


def is_fully_completed(group: GameStructure, completed: Iterable[str]) -> bool:
    return bool(group.location_ids) and _completed_count(group, completed) == len(group.location_ids)


def can_advance_early(group: Optional[GameStructure], completed: Iterable[str]) -> bool:
    """Minimum met, auto-advance off, and something left to visit."""
    if group is None or group.auto_advance or not group.location_ids:
        return False
    completed = list(completed)
    return is_completed(group, completed) and not is_fully_completed(group, completed)


def _is_finished(group: GameStructure, completed: Iterable[str]) -> bool:
    # Without auto-advance the team stays until every location is done or
    # it skips the group explicitly.
    completed = list(completed)
    if is_fully_completed(group, completed):
        return True
    return group.auto_advance and is_completed(group, completed)


def compute_current_group(
    structure: Optional[GameStructure],
    completed: Iterable[str],
    skipped: Iterable[str] = (),
) -> str:
    """Return the id of the first group that is neither finished nor skipped.

    Groups are visited in declaration order; a skipped group skips its whole
    subtree. Returns "" when nothing is left.
    """
    if structure is None:
        return ''
    done = set(completed)
    skip = set(skipped or ())

    def walk(group: GameStructure) -> str:
        if group.id in skip:
            return ''
        if group.location_ids and not _is_finished(group, done):
            return group.id
        for sub in group.sub_groups:
            found = walk(sub)
            if found:
                return found
        return ''

    return walk(structure)


def _random_rank(team_code: str, group_id: str, completed: Sequence[str], location_id: str) -> str:
    seed = '|'.join((team_code, group_id, ','.join(sorted(completed)), location_id))
    return hashlib.sha256(seed.encode('utf-8')).hexdigest()


def get_available_location_ids(
    structure: Optional[GameStructure],
    group_id: str,
    completed: Iterable[str],
    team_code: str,
) -> List[str]:
    group = find_group_by_id(structure, group_id)
    if group is None or not group.location_ids:
        return []
    completed = list(completed)
    done = set(completed)
    unvisited = [loc_id for loc_id in group.location_ids if loc_id not in done]
    if not unvisited:
        return []

    if group.routing == ROUTE_ORDERED:
        return unvisited[:1]
    if group.routing == ROUTE_RANDOM:
        ranked = sorted(unvisited, key=lambda loc_id: _random_rank(team_code, group.id, completed, loc_id))
        return ranked[:max(1, group.max_next)]
    # free_roam and scavenger_hunt both offer everything that is left
    return unvisited


def get_next_group(
    structure: GameStructure,
    current_group_id: str,
    completed: Iterable[str],
) -> Tuple[Optional[GameStructure], bool, str]:
    """Decide where a team goes after ``current_group_id``.

    Returns ``(group, should_advance, reason)``.
    """
    completed = list(completed)
    current = find_group_by_id(structure, current_group_id)
    if current is None:
        return None, False, REASON_GROUP_NOT_FOUND
    if not is_completed(current, completed):
        return current, False, REASON_GROUP_INCOMPLETE
    if not current.auto_advance:
        return current, False, REASON_AUTO_ADVANCE_DISABLED

    parent, index = find_parent_and_index(structure, current.id)
    if parent is None:
        return None, False, REASON_NO_PARENT
    if index + 1 < len(parent.sub_groups):
        return parent.sub_groups[index + 1], True, REASON_NEXT_SIBLING
    if not parent.is_root:
        next_group, should_advance, _ = get_next_group(structure, parent.id, completed)
        if should_advance:
            return next_group, True, REASON_PARENT_NEXT_SIBLING
    return None, False, REASON_ALL_COMPLETE


def validate_structure(structure: Optional[GameStructure]) -> None:
    """Raise ``InvalidStructure`` describing the first problem found."""
    if structure is None:
        return
    if structure.is_root and not structure.sub_groups:
        raise InvalidStructure('game structure must have at least one visible subgroup')

    seen_groups, seen_locations = set(), set()
    for group in iter_groups(structure):
        if group is not structure and group.is_root:
            raise InvalidStructure('is_root can only be true for the top-level group')
        if group.id:
            if group.id in seen_groups:
                raise InvalidStructure('duplicate group ID found in game structure')
            seen_groups.add(group.id)
        for loc_id in group.location_ids:
            if loc_id in seen_locations:
                raise InvalidStructure('duplicate location ID found in game structure')
            seen_locations.add(loc_id)
        if group.is_root:
            continue
        if not group.name:
            raise InvalidStructure('visible group must have a name')
        if not group.color:
            raise InvalidStructure('visible group must have a color')
        if group.routing not in ROUTING_STRATEGIES:
            raise InvalidStructure(f'unknown routing strategy {group.routing!r}')
        if group.navigation not in NAVIGATION_MODES:
            raise InvalidStructure(f'unknown navigation mode {group.navigation!r}')
        if group.completion_type not in COMPLETION_TYPES:
            raise InvalidStructure('invalid completion type for group')
        if group.routing == ROUTE_ORDERED and group.completion_type != COMPLETION_ALL:
            raise InvalidStructure('ordered groups must require all locations')
        if group.completion_type == COMPLETION_MINIMUM and not 1 <= group.minimum_required <= len(group.location_ids):
            raise InvalidStructure('minimum required must be between 1 and the number of locations')
        if group.routing == ROUTE_RANDOM and group.max_next < 1:
            raise InvalidStructure('max_next must be greater than 0 for random routing')
