from sqlmodel import SQLModel, create_engine
from .config import DATABASE_URL

# Create engine with SQLite
engine = create_engine(
    DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False}
)


def create_db_and_tables(bind=engine):
    """Create all database tables."""
    # Importing the models registers their tables on the metadata
    from . import models  # noqa: F401

    SQLModel.metadata.create_all(bind)
