"""Application operations."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from ..core.logging import get_logger
from .base import ResourceService

logger = get_logger(__name__)


class App(BaseModel):
    """An ``app.query`` row. Read-only snapshot; re-query for current state."""
    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    state: str = "UNKNOWN"
    active: Optional[bool] = None

    @property
    def is_running(self) -> bool:
        return self.state.upper() == "RUNNING"


class AppService(ResourceService[App]):
    """Query, start, stop and restart applications by name."""

    namespace = "app"
    label = "App"
    record_type = App

    async def list(self) -> List[App]:
        return await self.query()

    async def get(self, name: str) -> App:
        return await self.get_one("name", name)

    async def start(self, name: str) -> None:
        await self._caller.call(self.method("start"), [name])
        logger.info("App %s started", name)

    async def stop(self, name: str) -> None:
        await self._caller.call(self.method("stop"), [name])
        logger.info("App %s stopped", name)

    async def restart(self, name: str) -> None:
        await self.stop(name)
        await self.start(name)
        logger.info("App %s restarted", name)
