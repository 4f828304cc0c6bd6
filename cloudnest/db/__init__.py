"""
Database module for SQLAlchemy session management.
"""
from cloudnest.db.session import get_db, init_db, check_db_connection, engine, SessionLocal

__all__ = ["get_db", "init_db", "check_db_connection", "engine", "SessionLocal"]
