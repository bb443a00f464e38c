from .connection import async_engine, create_db_and_tables, get_task_db_session

__all__ = [
    "async_engine",
    "create_db_and_tables",
    "get_task_db_session",
]
