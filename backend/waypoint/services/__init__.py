"""Game-progression services.

``structure`` is pure logic over the declarative game tree and imports
nothing from the database layer. The other modules open transactions at
their public entry points and pass the session down to ``repositories``.
"""
