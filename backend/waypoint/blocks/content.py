from waypoint.blocks.base import (
    CONTEXT_FINISH,
    CONTEXT_LOBBY,
    CONTEXT_LOCATION_CLUES,
    CONTEXT_LOCATION_CONTENT,
    BaseBlock,
    first_value,
    register,
)
from waypoint.errors import InvalidInput

ALERT_VARIANTS = ('info', 'warning', 'success', 'error')


@register(CONTEXT_LOCATION_CONTENT, CONTEXT_LOCATION_CLUES, CONTEXT_LOBBY, CONTEXT_FINISH)
class MarkdownBlock(BaseBlock):
    type = 'markdown'
    name = 'Text'
    description = 'Write text using markdown formatting.'
    defaults = {'content': ''}

    def update_block_data(self, form):
        super().update_block_data(form)
        self.content = first_value(form, 'content', '')


@register(CONTEXT_LOCATION_CONTENT, CONTEXT_LOBBY, CONTEXT_FINISH)
class DividerBlock(BaseBlock):
    type = 'divider'
    name = 'Divider'
    description = 'A horizontal rule, optionally with a title.'
    defaults = {'title': ''}

    def update_block_data(self, form):
        self.title = first_value(form, 'title', '')


@register(CONTEXT_LOCATION_CONTENT, CONTEXT_LOBBY, CONTEXT_FINISH)
class HeaderBlock(BaseBlock):
    type = 'header'
    name = 'Header'
    description = 'A page heading with an optional icon and subtitle.'
    defaults = {'title': '', 'subtitle': '', 'icon': ''}

    def update_block_data(self, form):
        title = first_value(form, 'title', '').strip()
        if not title:
            raise InvalidInput('title is required')
        self.title = title
        self.subtitle = first_value(form, 'subtitle', '')
        self.icon = first_value(form, 'icon', '')


@register(CONTEXT_LOCATION_CONTENT)
class AlertBlock(BaseBlock):
    type = 'alert'
    name = 'Alert'
    description = 'Highlight an important message.'
    defaults = {'content': '', 'variant': 'info'}

    def update_block_data(self, form):
        self.content = first_value(form, 'content', '')
        variant = first_value(form, 'variant', 'info')
        self.variant = variant if variant in ALERT_VARIANTS else 'info'


@register(CONTEXT_LOCATION_CONTENT, CONTEXT_LOCATION_CLUES)
class ImageBlock(BaseBlock):
    type = 'image'
    name = 'Image'
    description = 'Show an uploaded or linked image.'
    defaults = {'url': '', 'caption': '', 'link': ''}

    def update_block_data(self, form):
        self.url = first_value(form, 'url', '')
        self.caption = first_value(form, 'caption', '')
        self.link = first_value(form, 'link', '')
