# backend/db/session.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from core.config import settings


Base = declarative_base()


def make_engine(url: str):
    connect_args = {}
    if url.startswith("sqlite"):
        # FastAPI runs sync routes in a threadpool; wait on the write lock instead of failing
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True, future=True)


engine = make_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# elevated-privilege store client; only the webhook gateway is handed this factory
service_engine = (
    engine
    if settings.service_database_url_effective == settings.database_url
    else make_engine(settings.service_database_url_effective)
)
ServiceSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=service_engine)


def get_db():
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()
