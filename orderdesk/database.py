from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

Base = declarative_base()


def make_session_factory(database_url: str):
    if not database_url:
        raise RuntimeError("DATABASE_URL is not set. Check your .env file.")

    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False} if database_url.startswith("sqlite") else {}
    )
    # models must be imported before create_all sees their tables
    from orderdesk import models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
