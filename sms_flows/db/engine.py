# sms_flows/db/engine.py
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from sms_flows.conf import ASSETS_DIR, DATABASE_URL
from sms_flows.db.models import Base

logger = logging.getLogger(__name__)

# Cache the engine to avoid recreating it
_engine = None


def get_engine():
    """Get SQLAlchemy engine for the flow database."""
    global _engine
    if _engine is None:
        connect_args = {}
        if DATABASE_URL.startswith("sqlite"):
            ASSETS_DIR.mkdir(parents=True, exist_ok=True)
            connect_args = {"check_same_thread": False}
        _engine = create_engine(DATABASE_URL, connect_args=connect_args)
        Base.metadata.create_all(bind=_engine, checkfirst=True)
        logger.debug("Flow DB schema ready → %s", _engine.url.render_as_string(hide_password=True))
    return _engine


def get_session():
    """Get a database session for the flow database."""
    Session = sessionmaker(bind=get_engine())
    return Session()
