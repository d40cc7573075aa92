from contextlib import contextmanager
from typing import Iterator
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./classvault.db")

if DATABASE_URL.startswith("sqlite"):
    sqlite_args = {"check_same_thread": False, "timeout": 30}
else:
    sqlite_args = {}

engine = create_engine(DATABASE_URL, connect_args=sqlite_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Commit everything written inside the block, or nothing at all."""

    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
