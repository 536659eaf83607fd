import time

from sqlalchemy import Column, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from hearth.config import config

Base = declarative_base()


def _now() -> int:
    return int(time.time())


class KV(Base):
    __tablename__ = "kv"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)


class IconCache(Base):
    __tablename__ = "icon_cache"

    cache_key = Column(String, primary_key=True)
    icon_path = Column(String, nullable=False)  # bare filename under <dataDir>/icons
    icon_source = Column(String, nullable=False)  # site|fallback
    updated_at = Column(Integer, nullable=False, default=_now)


class BackgroundCache(Base):
    __tablename__ = "background_cache"

    cache_key = Column(String, primary_key=True)
    file_path = Column(String, nullable=False)  # bare filename under <dataDir>/cache
    fetched_at = Column(Integer, nullable=False, default=_now)


def make_engine(database_url: str):
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args)


engine = make_engine(config.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
