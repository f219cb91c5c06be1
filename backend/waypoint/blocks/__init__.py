from waypoint.blocks.base import (  # noqa: F401
    CONTEXT_FINISH,
    CONTEXT_LOBBY,
    CONTEXT_LOCATION_CLUES,
    CONTEXT_LOCATION_CONTENT,
    CONTEXTS,
    BaseBlock,
    Mode,
    can_block_be_used_in_context,
    create_from_base_block,
    get_blocks_for_context,
    new_block_of_type,
    registered_types,
)

# Importing the modules registers their block types
from waypoint.blocks import challenges, clues, content  # noqa: F401,E402
