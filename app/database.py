from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from app.config import settings

Base = declarative_base()


def make_engine(url: str, timeout: float = None):
    """Build an engine whose connections never wait longer than `timeout` seconds."""
    timeout = settings.STORE_TIMEOUT_SECONDS if timeout is None else timeout
    if url.startswith("sqlite"):
        # sqlite busy timeout covers lock waits between writers
        return create_engine(url, connect_args={"check_same_thread": False, "timeout": timeout})
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_timeout=timeout,
        connect_args={"connect_timeout": max(1, int(timeout))},
    )


engine = make_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
