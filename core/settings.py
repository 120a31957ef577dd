"""
Settings Service.

Modules declare setting definitions; values are stored per scope and
validated against their definition. Unset values resolve to the default.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from core.context import Scope
from core.errors import ConflictError, NotFoundError, RegistrationClosedError, ValidationError

logger = logging.getLogger(__name__)

_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "list": (list,),
}


@dataclass(frozen=True)
class SettingDefinition:
    key: str
    title: str = ""
    description: str = ""
    default: Any = None
    type: str = "string"
    allowed_values: tuple[Any, ...] = ()
    group: str = "general"

    def validate(self, value: Any) -> Any:
        expected = _TYPES.get(self.type, (object,))
        if self.type in ("integer", "number") and isinstance(value, bool):
            raise ValidationError(f"Setting '{self.key}' expects {self.type}")
        if value is not None and not isinstance(value, expected):
            raise ValidationError(f"Setting '{self.key}' expects {self.type}")
        if self.allowed_values and value not in self.allowed_values:
            raise ValidationError(
                f"Setting '{self.key}' must be one of: {', '.join(map(str, self.allowed_values))}"
            )
        return value


@dataclass
class _ScopeValues:
    values: dict[str, Any] = field(default_factory=dict)


class SettingsService:
    def __init__(self) -> None:
        self._definitions: dict[str, SettingDefinition] = {}
        self._values: dict[tuple[str, str], _ScopeValues] = {}
        self._lock = threading.Lock()
        self._frozen = False

    def register_definition(self, definition: SettingDefinition) -> None:
        with self._lock:
            if self._frozen:
                raise RegistrationClosedError(f"Cannot register setting '{definition.key}' after initialization")
            if definition.key in self._definitions:
                raise ConflictError(f"Setting '{definition.key}' already defined", code="SETTING_DUPLICATE")
            if definition.default is not None:
                definition.validate(definition.default)
            self._definitions[definition.key] = definition

    def freeze(self) -> None:
        self._frozen = True

    def definitions(self) -> list[SettingDefinition]:
        return list(self._definitions.values())

    def get(self, key: str, scope: Optional[Scope] = None) -> Any:
        definition = self._definition(key)
        scoped = self._values.get((scope or Scope()).key())
        if scoped is not None and key in scoped.values:
            return scoped.values[key]
        return definition.default

    def set(self, key: str, value: Any, scope: Optional[Scope] = None) -> Any:
        """
        Store a validated value for ``scope``.

        Raises:
            NotFoundError: Unknown setting key.
            ValidationError: Value violates the definition.
        """
        definition = self._definition(key)
        definition.validate(value)
        with self._lock:
            self._values.setdefault((scope or Scope()).key(), _ScopeValues()).values[key] = value
        logger.info(f"Setting '{key}' updated.")
        return value

    def update(self, values: dict[str, Any], scope: Optional[Scope] = None) -> dict[str, Any]:
        """Validate every value first, then apply them together."""
        for key, value in values.items():
            self._definition(key).validate(value)
        for key, value in values.items():
            self.set(key, value, scope)
        return self.resolve_all(scope)

    def resolve_all(self, scope: Optional[Scope] = None) -> dict[str, Any]:
        return {key: self.get(key, scope) for key in self._definitions}

    def _definition(self, key: str) -> SettingDefinition:
        definition = self._definitions.get(key)
        if definition is None:
            raise NotFoundError(f"Setting '{key}' is not defined")
        return definition
