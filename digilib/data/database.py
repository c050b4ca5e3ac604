# digilib/data/database.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from digilib.utils.settings import DATABASE_URL

#sqlite (testy, dev) wymaga check_same_thread=False pod fastapi
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, pool_pre_ping=True, connect_args=connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> None:
    # import modeli żeby zarejestrowały się w Base.metadata
    import digilib.data.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
