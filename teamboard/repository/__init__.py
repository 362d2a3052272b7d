"""
Entity repositories: the policy layer over the store.

Each module holds plain functions that take a ``Store`` as their first
argument. They assign defaults, enforce uniqueness and keep
``Team.members`` and ``User.team_id`` in step.
"""
