"""Virtual machine operations."""

import asyncio
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.logging import get_logger
from .base import Caller, ResourceService

logger = get_logger(__name__)


class VMStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    state: str = "UNKNOWN"
    pid: Optional[int] = None


class VirtualMachine(BaseModel):
    """A ``vm.query`` row. Read-only snapshot; re-query for current state."""
    model_config = ConfigDict(extra="allow")

    id: int
    name: str
    status: VMStatus = Field(default_factory=VMStatus)

    @property
    def state(self) -> str:
        return self.status.state

    @property
    def is_running(self) -> bool:
        return self.status.state.upper() == "RUNNING"


class VirtualMachineService(ResourceService[VirtualMachine]):
    """Query, start, stop and restart virtual machines by numeric id."""

    namespace = "vm"
    label = "VM with id"
    record_type = VirtualMachine

    def __init__(self, caller: Caller, restart_delay: float = 1.0) -> None:
        super().__init__(caller)
        self.restart_delay = restart_delay

    async def list(self) -> List[VirtualMachine]:
        return await self.query()

    async def get(self, vm_id: int) -> VirtualMachine:
        return await self.get_one("id", vm_id)

    async def start(self, vm_id: int) -> None:
        await self._caller.call(self.method("start"), [vm_id])
        logger.info("VM %s started", vm_id)

    async def stop(self, vm_id: int, force: bool = False) -> None:
        await self._caller.call(self.method("stop"), [vm_id, {"force": force}])
        logger.info("VM %s stopped", vm_id)

    async def restart(self, vm_id: int) -> None:
        """Force-stop, wait for the VM to settle, then start it."""
        await self.stop(vm_id, force=True)
        await asyncio.sleep(self.restart_delay)
        await self.start(vm_id)
        logger.info("VM %s restarted", vm_id)
