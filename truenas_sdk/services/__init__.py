"""Typed resource operations built on the request multiplexer."""

from .base import ResourceService
from .vms import VirtualMachine, VMStatus, VirtualMachineService
from .apps import App, AppService

__all__ = [
    "ResourceService",
    "VirtualMachine",
    "VMStatus",
    "VirtualMachineService",
    "App",
    "AppService",
]
