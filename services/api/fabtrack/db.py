from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool
from .config import settings

url = settings.database_url
if url.startswith("sqlite"):
    # one shared connection so the API thread pool and the extraction workers see the same data
    engine = create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
else:
    engine = create_engine(url, pool_pre_ping=True, pool_recycle=3600)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, autoflush=False, autocommit=False)

class Base(DeclarativeBase):
    pass
