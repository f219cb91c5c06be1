"""Blocks a team has to solve before the location counts as done."""
from waypoint.blocks.base import (
    CONTEXT_LOBBY,
    CONTEXT_LOCATION_CONTENT,
    BaseBlock,
    first_value,
    is_checked,
    parse_points,
    register,
)
from waypoint.errors import InvalidInput


def _state_data(state) -> dict:
    return dict(state.data or {})


@register(CONTEXT_LOCATION_CONTENT)
class AnswerBlock(BaseBlock):
    type = 'answer'
    name = 'Password'
    description = 'Players must enter the correct answer to a prompt.'
    requires_validation = True
    defaults = {'prompt': '', 'answer': '', 'fuzzy': False}
    secret_fields = ('answer', 'fuzzy')

    def update_block_data(self, form):
        super().update_block_data(form)
        if form.get('prompt') is None or form.get('answer') is None:
            raise InvalidInput('prompt and answer are required fields')
        self.prompt = first_value(form, 'prompt', '')
        self.answer = first_value(form, 'answer', '')
        self.fuzzy = is_checked(form, 'fuzzy')

    def _matches(self, guess: str) -> bool:
        if self.fuzzy:
            return guess.strip().lower() == self.answer.strip().lower()
        return guess == self.answer

    def validate_player_input(self, state, form):
        guess = first_value(form, 'answer')
        if guess is None:
            raise InvalidInput('answer is a required field')
        data = _state_data(state)
        data['attempts'] = data.get('attempts', 0) + 1
        data['guesses'] = list(data.get('guesses', [])) + [guess]
        state.data = data
        if self._matches(guess):
            state.is_complete = True
            state.points_awarded = self.points
        return state


@register(CONTEXT_LOCATION_CONTENT)
class PincodeBlock(BaseBlock):
    type = 'pincode'
    name = 'Pincode'
    description = 'Players enter a code one character per box.'
    requires_validation = True
    defaults = {'prompt': '', 'pincode': '', 'unlocked_content': ''}
    secret_fields = ('pincode', 'unlocked_content')

    def update_block_data(self, form):
        super().update_block_data(form)
        if form.get('prompt') is None or form.get('pincode') is None:
            raise InvalidInput('prompt and pincode are required fields')
        self.prompt = first_value(form, 'prompt', '')
        self.pincode = first_value(form, 'pincode', '')
        self.unlocked_content = first_value(form, 'unlocked_content', self.unlocked_content)

    def player_data(self, team_code, state=None):
        data = super().player_data(team_code, state)
        data['length'] = len(self.pincode)
        if state is not None and state.is_complete:
            data['unlocked_content'] = self.unlocked_content
        return data

    def validate_player_input(self, state, form):
        chars = form.get('pincode')
        if chars is None:
            raise InvalidInput('pincode is a required field')
        if not chars:
            raise InvalidInput('pincode cannot be empty')
        if len(chars) < len(self.pincode):
            raise InvalidInput('pincode length does not match the required length')
        if any(len(c) != 1 for c in chars):
            raise InvalidInput('pincode must be a single character per input')
        guess = ''.join(chars)

        data = _state_data(state)
        data['attempts'] = data.get('attempts', 0) + 1
        data['guesses'] = list(data.get('guesses', [])) + [guess]
        state.data = data
        if guess == self.pincode:
            state.is_complete = True
            state.points_awarded = self.points
        return state


@register(CONTEXT_LOCATION_CONTENT)
class ChecklistBlock(BaseBlock):
    type = 'checklist'
    name = 'Checklist'
    description = 'Players tick off every item on a list.'
    requires_validation = True
    defaults = {'content': '', 'items': []}

    def update_block_data(self, form):
        super().update_block_data(form)
        self.content = first_value(form, 'content', '')
        descriptions = form.get('checklist_items', [])
        ids = form.get('checklist_item_ids', [])
        items = []
        for i, text in enumerate(descriptions):
            if not text.strip():
                continue
            item_id = ids[i] if i < len(ids) and ids[i] else f'item_{i}'
            items.append({'id': item_id, 'description': text})
        self.items = items

    def validate_player_input(self, state, form):
        known = {item['id'] for item in self.items}
        checked = [item_id for item_id in form.get('checklist_item_ids', []) if item_id in known]
        data = _state_data(state)
        data['checked_items'] = sorted(set(data.get('checked_items', [])) | set(checked))
        state.data = data
        if known and known.issubset(data['checked_items']):
            state.is_complete = True
            state.points_awarded = self.points
        return state


@register(CONTEXT_LOCATION_CONTENT)
class QuizBlock(BaseBlock):
    type = 'quiz_block'
    name = 'Quiz'
    description = 'Answer a quiz question with multiple choice options.'
    requires_validation = True
    defaults = {
        'question': '',
        'options': [],
        'multiple_choice': False,
        'randomize_order': False,
        'retry_enabled': False,
    }

    def update_block_data(self, form):
        self.points = parse_points(form, default=0)
        if form.get('question'):
            self.question = form['question'][0]
        self.multiple_choice = first_value(form, 'multiple_choice') == 'on'
        self.randomize_order = first_value(form, 'randomize_order') == 'on'
        self.retry_enabled = first_value(form, 'retry_enabled') == 'on'

        correct = form.get('option_correct', [])
        options = []
        for i, text in enumerate(form.get('option_text', [])):
            if not text.strip():
                continue
            option_id = f'option_{i}'
            options.append({'id': option_id, 'text': text, 'is_correct': option_id in correct, 'order': i})
        self.options = options
        if options and not any(o['is_correct'] for o in options):
            raise InvalidInput('at least one option must be marked as correct')

    def player_data(self, team_code, state=None):
        data = super().player_data(team_code, state)
        data['options'] = [{k: v for k, v in o.items() if k != 'is_correct'} for o in self.options]
        return data

    def calculate_points(self, selected):
        """Returns ``(points, is_correct)`` for a selection of option ids."""
        if not self.options:
            return 0, False
        correct_ids = {o['id'] for o in self.options if o['is_correct']}
        if not correct_ids:
            return 0, False

        if self.multiple_choice:
            chosen = set(selected)
            right = sum(1 for o in self.options if (o['id'] in chosen) == o['is_correct'])
            points = int(self.points * right / len(self.options) + 0.5)
            return points, right == len(self.options)

        if len(selected) == 1 and selected[0] in correct_ids:
            return self.points, True
        return 0, False

    def validate_player_input(self, state, form):
        data = _state_data(state)
        data['attempts'] = data.get('attempts', 0) + 1
        selected = list(form.get('quiz_option', []))
        if not selected:
            data.update(selected_options=[], is_correct=False)
            state.data = data
            state.is_complete = False
            state.points_awarded = 0
            return state

        points, correct = self.calculate_points(selected)
        data.update(selected_options=selected, is_correct=correct)
        state.data = data

        if not self.retry_enabled or correct:
            state.is_complete = True
            state.points_awarded = points
            return state

        # Retry allowed and not perfect yet; multiple choice keeps partial credit
        state.is_complete = False
        state.points_awarded = points if self.multiple_choice else 0
        return state


@register(CONTEXT_LOCATION_CONTENT, CONTEXT_LOBBY)
class TeamNameBlock(BaseBlock):
    type = 'team_name'
    name = 'Team name'
    description = 'Let the team choose its display name.'
    requires_validation = True
    defaults = {'button_text': 'Save', 'allow_changing': False}

    def update_block_data(self, form):
        super().update_block_data(form)
        if form.get('button_text'):
            self.button_text = form['button_text'][0]
        self.allow_changing = is_checked(form, 'allow_changing')

    def validate_player_input(self, state, form):
        name = (first_value(form, 'team_name') or '').strip()
        if name:
            data = _state_data(state)
            data['team_name'] = name
            state.data = data
        state.is_complete = True
        state.points_awarded = self.points
        return state
