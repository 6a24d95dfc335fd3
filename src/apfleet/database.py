"""Database setup."""

from sqlmodel import SQLModel, create_engine

from apfleet.config import settings

engine = create_engine(
    f"sqlite:///{settings.db_path}",
    echo=False,
    connect_args={"check_same_thread": False},
)


def init_db() -> None:
    """Create all tables."""
    # Register table models with SQLModel before create_all()
    import apfleet.store.models  # noqa: F401

    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    SQLModel.metadata.create_all(engine)
