from .session import SessionLocal, engine, get_db_session

__all__ = ["SessionLocal", "engine", "get_db_session"]
