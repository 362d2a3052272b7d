"""
Team collaboration backend: accounts, teams, a kanban task board and team
chat, served over FastAPI with Socket.IO for live updates.

Storage goes through one store interface with a SQL implementation and an
in-memory fallback, chosen once at startup.
"""
