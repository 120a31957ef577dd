"""
IAdminModule - Abstract Base Class for admin modules.

A module bundles panels, widgets, commands, search adapters and menu items.
Capabilities beyond the module contract (dashboard providers, search
adapters, command handlers, authenticators, authorizers) have their own
interfaces in their respective core modules.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING
import logging

from core.descriptors import MenuItem, ModuleManifest

if TYPE_CHECKING:
    from core.admin import Admin


@dataclass
class ModuleContext:
    """Context handed to a module while it registers."""

    admin: "Admin"
    locale: str = "en"

    @property
    def logger(self) -> logging.Logger:
        return logging.getLogger("modules")


class IAdminModule(ABC):
    """
    Abstract interface for pluggable admin modules.
    All modules must implement this interface to be registered.
    """

    @abstractmethod
    def manifest(self) -> ModuleManifest:
        """
        Returns the module identity and required feature flags.

        Returns:
            ModuleManifest: The module's manifest. A module whose
            feature flags are not all enabled is skipped.
        """
        pass

    @abstractmethod
    def register(self, ctx: ModuleContext) -> None:
        """
        Registers panels, widgets, commands and search adapters.

        Args:
            ctx: Module context containing the Admin instance
        """
        pass

    def menu_items(self, locale: str) -> list[MenuItem]:
        """
        Returns navigation entries contributed by this module.
        Override this method to provide menu items.

        Args:
            locale: Requested locale

        Returns:
            list[MenuItem]: Items merged into the admin menu
        """
        return []

    async def on_startup(self) -> None:
        """
        Called by the host once the event loop is running.
        Override for async initialization (schema creation, warm-up).
        """
        pass

    async def on_shutdown(self) -> None:
        """
        Called when the host shuts down.
        Override for cleanup logic (closing queues, clients).
        """
        pass

    def get_status(self) -> dict:
        """
        Returns the current status of the module for monitoring.

        Returns:
            dict: Status info with structure:
                  {
                      "status": "active" | "warning" | "error",
                      "details": { "key": "value" }
                  }
        """
        return {
            "status": "active",
            "details": {}
        }
