from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from stockflow.core.events import EventDispatcher
from stockflow.database import get_db
from stockflow.services.notification_service import default_dispatcher


def get_event_dispatcher() -> EventDispatcher:
    """Dispatcher that turns committed domain events into notifications."""
    return default_dispatcher()


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
Events = Annotated[EventDispatcher, Depends(get_event_dispatcher)]
