from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from app.config import get_settings

settings = get_settings()

database_url = settings.DATABASE_URL

# Configure engine based on database type
connect_args = {}
engine_kwargs = {}

if database_url.startswith("sqlite"):
    # The API threadpool and the session share connections
    connect_args = {"check_same_thread": False}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # In-memory databases only exist on one connection
        engine_kwargs = {"poolclass": StaticPool}
else:
    # PostgreSQL settings
    connect_args = {
        "connect_timeout": 10,
    }
    engine_kwargs = {
        "pool_size": 5,
        "max_overflow": 10,
        "pool_pre_ping": True,  # Verify connections before using
    }

engine = create_engine(
    database_url,
    connect_args=connect_args,
    echo=settings.DB_ECHO,
    **engine_kwargs
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
