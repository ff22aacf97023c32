"""Quiz domain services: identity, content ordering, scoring and phases.

Imported by HTTP routes and socket handlers, keeping transport concerns
separated from the game mechanics.
"""
