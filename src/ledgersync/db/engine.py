"""SQLModel engine singleton."""
from sqlmodel import SQLModel, create_engine

from ledgersync.config import get_settings

_engine = None


def get_engine():
    """Return the module-level engine, creating it (and all tables) on first call."""
    global _engine
    if _engine is None:
        settings = get_settings()
        connect_args = {}
        if settings.database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False  # shared with FastAPI threadpool
        _engine = create_engine(settings.database_url, connect_args=connect_args)
        # Import all models so metadata is populated before create_all
        from ledgersync.models.connection import ConnectionRecord  # noqa
        from ledgersync.models.entities import Bill, Client, Invoice, Payment, Project, Vendor  # noqa
        from ledgersync.models.milestone import Milestone, MilestoneLog, Notification  # noqa
        from ledgersync.models.sync import SyncRecord, SyncTriggerLog  # noqa
        SQLModel.metadata.create_all(_engine)
    return _engine
