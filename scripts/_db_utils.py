from __future__ import annotations

import os
from contextlib import contextmanager

from pymongo import MongoClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker


def create_script_engine(db_url: str):
    return create_engine(
        db_url,
        future=True,
        pool_pre_ping=True,
        pool_recycle=1800,
    )


@contextmanager
def script_session(db_url: str):
    engine = create_script_engine(db_url)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


@contextmanager
def script_mongo(mongo_url: str | None = None, db_name: str | None = None):
    url = (mongo_url or os.environ.get("MONGO_URL") or "mongodb://localhost:27017").strip()
    name = (db_name or os.environ.get("MONGO_DB_NAME") or "workhub").strip()
    client: MongoClient = MongoClient(url, serverSelectionTimeoutMS=5000)
    try:
        yield client[name]
    finally:
        client.close()
