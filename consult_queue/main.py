import logging
from typing import Optional

from .core.config import settings
from .core.database import get_redis, get_session_factory, init_db
from .services.appointments import HttpAppointmentLookup
from .services.notifications import QueueNotifier, RedisQueueNotifier
from .services.queue_service import QueueService
from .services.repository import InMemoryQueueRepository, SqlAlchemyQueueRepository

logger = logging.getLogger(__name__)

def configure_logging(level: Optional[str] = None):
    """Configure root logging for the queue service."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

def create_queue_service(persistent: bool = True, publish_events: bool = True) -> QueueService:
    """
    Build a QueueService wired to the configured collaborators.

    ``persistent`` selects the SQLAlchemy repository (tables are created if
    missing) over the in-memory one; ``publish_events`` sends queue events
    to Redis instead of only logging them.
    """
    if persistent:
        init_db()
        repository = SqlAlchemyQueueRepository(get_session_factory())
    else:
        repository = InMemoryQueueRepository()

    notifier = RedisQueueNotifier(get_redis()) if publish_events else QueueNotifier()

    logger.info(
        f"Starting {settings.APP_NAME} v{settings.VERSION} "
        f"({'database' if persistent else 'in-memory'} storage)"
    )
    return QueueService(
        repository=repository,
        appointments=HttpAppointmentLookup(),
        notifier=notifier,
    )
