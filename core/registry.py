"""
Module Registry - Feature-gated module registration.
Implements Open/Closed Principle (OCP) for extensibility.
"""
from typing import Dict, List, Optional, TYPE_CHECKING
import logging

from core.config import Features
from core.descriptors import MenuItem
from core.errors import RegistrationClosedError
from core.interface import IAdminModule, ModuleContext

if TYPE_CHECKING:
    from core.admin import Admin


class ModuleRegistry:
    """
    Registry for the modules of one Admin instance.
    Modules whose manifest requires a disabled feature are skipped.
    """

    def __init__(self, features: Features) -> None:
        self._features = features
        self._modules: Dict[str, IAdminModule] = {}
        self._skipped: Dict[str, List[str]] = {}
        self._frozen = False
        self._logger = logging.getLogger(__name__)

    def register(self, module: IAdminModule, admin: "Admin", locale: str = "en") -> bool:
        """
        Register a module with the registry.

        Args:
            module: The module instance to register
            admin: Admin instance handed to the module
            locale: Locale passed through the module context

        Returns:
            bool: True if the module registered, False if it was skipped

        Raises:
            RegistrationClosedError: Registry frozen by Admin.initialize()
        """
        if self._frozen:
            raise RegistrationClosedError("Cannot register modules after initialization")

        manifest = module.manifest()
        module_id = manifest.id

        if module_id in self._modules:
            self._logger.warning(f"Module '{module_id}' already registered. Skipping.")
            return False

        disabled = sorted(f for f in manifest.feature_flags if not self._features.is_enabled(f))
        if disabled:
            self._skipped[module_id] = disabled
            self._logger.info(
                f"Module '{module_id}' skipped: feature(s) disabled: {', '.join(disabled)}"
            )
            return False

        module.register(ModuleContext(admin=admin, locale=locale))
        self._modules[module_id] = module
        self._logger.info(f"Module '{module_id}' registered successfully.")
        return True

    def freeze(self) -> None:
        self._frozen = True

    def get_module(self, module_id: str) -> Optional[IAdminModule]:
        """
        Retrieve a module by id.

        Args:
            module_id: The id of the module to retrieve

        Returns:
            The module instance or None if not found
        """
        return self._modules.get(module_id)

    def get_all_modules(self) -> List[IAdminModule]:
        """Get all registered modules."""
        return list(self._modules.values())

    def get_module_ids(self) -> List[str]:
        """Get ids of all registered modules."""
        return list(self._modules.keys())

    def skipped(self) -> Dict[str, List[str]]:
        """Modules skipped by feature gating, with the disabled features."""
        return dict(self._skipped)

    def collect_menu_items(self, locale: str) -> List[MenuItem]:
        """Get menu items from all modules."""
        items: List[MenuItem] = []
        for module_id, module in self._modules.items():
            try:
                items.extend(module.menu_items(locale) or [])
            except Exception as e:
                self._logger.error(f"Error getting menu items from module '{module_id}': {e}")
        return items

    async def startup_all(self) -> None:
        """Run the async startup hook of every registered module."""
        for module_id, module in list(self._modules.items()):
            try:
                await module.on_startup()
            except Exception as e:
                self._logger.error(f"Error during module '{module_id}' startup: {e}")

    async def shutdown_all(self) -> None:
        """Shutdown all registered modules."""
        for module_id, module in list(self._modules.items()):
            try:
                await module.on_shutdown()
            except Exception as e:
                self._logger.error(f"Error during module '{module_id}' shutdown: {e}")
        self._logger.info("All modules shut down.")
