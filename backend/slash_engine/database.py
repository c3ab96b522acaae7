"""
Slash Negotiation Engine - Database Configuration
SQLAlchemy engine and session factory for the SQL-backed stores
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import load_settings

# Local SQLite unless DATABASE_URL points elsewhere
DATABASE_URL = load_settings().database_url

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

# Create engine
engine = create_engine(DATABASE_URL, echo=False, connect_args=_connect_args)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for ORM models
Base = declarative_base()


def init_db(bind=None):
    """Initialize database - create all tables."""
    from .models import db_models  # noqa: F401  registers tables on Base.metadata
    Base.metadata.create_all(bind=bind or engine)
