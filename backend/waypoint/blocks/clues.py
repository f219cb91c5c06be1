import hashlib

from waypoint.blocks.base import (
    CONTEXT_LOCATION_CLUES,
    CONTEXT_LOCATION_CONTENT,
    BaseBlock,
    first_value,
    parse_points,
    register,
)


@register(CONTEXT_LOCATION_CONTENT, CONTEXT_LOCATION_CLUES)
class ClueBlock(BaseBlock):
    """A hidden hint the team can reveal for a points cost."""
    type = 'clue'
    name = 'Clue'
    description = 'Reveal a hint at a points cost.'
    requires_validation = True
    defaults = {'clue_text': '', 'description_text': '', 'button_label': 'Reveal Clue'}

    def update_block_data(self, form):
        # stored negative, it is a cost
        self.points = -abs(parse_points(form, default=0))
        if form.get('clue_text'):
            self.clue_text = form['clue_text'][0]
        if form.get('description_text'):
            self.description_text = form['description_text'][0]
        self.button_label = first_value(form, 'button_label') or 'Reveal Clue'

    def player_data(self, team_code, state=None):
        data = super().player_data(team_code, state)
        if state is None or not state.is_complete:
            data.pop('clue_text')
        return data

    def validate_player_input(self, state, form):
        if first_value(form, 'reveal_clue') == 'true':
            data = dict(state.data or {})
            data['is_revealed'] = True
            state.data = data
            state.is_complete = True
            state.points_awarded = self.points
        return state


@register(CONTEXT_LOCATION_CLUES)
class RandomClueBlock(BaseBlock):
    type = 'random_clue'
    name = 'Random clue'
    description = 'Each team sees one clue picked from a list.'
    defaults = {'clues': []}

    def update_block_data(self, form):
        if 'clues' in form:
            # whitespace-only clues are kept; only truly empty ones go
            self.clues = [c for c in form['clues'] if c != '']

    def get_clue(self, team_code: str) -> str:
        if not self.clues:
            return 'No clues available'
        digest = hashlib.sha256((team_code + self.id).encode('utf-8')).digest()
        seed = int.from_bytes(digest[:8], 'big')
        return self.clues[seed % len(self.clues)]

    def player_data(self, team_code, state=None):
        return {'clue': self.get_clue(team_code)}
