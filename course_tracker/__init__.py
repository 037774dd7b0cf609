# course_tracker/__init__.py
# Local-first golf course tracking core: SQLite store, sync engine and REST client.
__version__ = "0.1.0"
