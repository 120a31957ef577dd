"""
Command Bus.

Messages name their type through ``message_type``; handlers declare the type
they execute. Panels dispatch actions with a ``command_name`` through the bus,
and handlers may declare a cron schedule so the jobs registry can run them.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional, Protocol, runtime_checkable

from core.context import AdminContext
from core.errors import ConflictError, NotFoundError, RegistrationClosedError, ValidationError

logger = logging.getLogger(__name__)


@runtime_checkable
class Command(Protocol):
    message_type: ClassVar[str]


@runtime_checkable
class CommandHandler(Protocol):
    """
    Executes one message type.

    Optional attributes:
        cron_schedule: Cron expression; when set the handler is also exposed as a job.
        description: Human readable summary.
    """

    message_type: str

    async def execute(self, ctx: AdminContext, message: Any) -> Any: ...


@dataclass
class GenericCommand:
    """Message built from an HTTP action payload when a handler has no factory."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def message_type(self) -> str:
        return self.name


class CommandBus:
    """Registry and dispatcher of command handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._lock = threading.Lock()
        self._frozen = False

    @property
    def enabled(self) -> bool:
        return True

    def register(self, handler: CommandHandler) -> None:
        """
        Register a handler for its message type.

        Raises:
            ValidationError: Handler declares no message type.
            ConflictError: Another handler owns the type.
        """
        name = getattr(handler, "message_type", "")
        if not name:
            raise ValidationError(f"Handler {handler!r} declares no message_type")
        with self._lock:
            if self._frozen:
                raise RegistrationClosedError(f"Cannot register command '{name}' after initialization")
            if name in self._handlers:
                raise ConflictError(f"Command '{name}' already has a handler", code="COMMAND_DUPLICATE")
            self._handlers[name] = handler
        logger.debug(f"Command '{name}' registered.")

    def freeze(self) -> None:
        self._frozen = True

    def handler_for(self, name: str) -> Optional[CommandHandler]:
        return self._handlers.get(name)

    def names(self) -> list[str]:
        return list(self._handlers)

    def scheduled(self) -> list[CommandHandler]:
        """Handlers that declare a cron schedule."""
        return [h for h in self._handlers.values() if getattr(h, "cron_schedule", "")]

    async def dispatch(self, ctx: AdminContext, message: Any) -> Any:
        """
        Execute ``message`` with its registered handler.

        Raises:
            NotFoundError: No handler for the message type.
        """
        name = getattr(message, "message_type", "")
        handler = self._handlers.get(name)
        if handler is None:
            raise NotFoundError(f"No handler registered for command '{name}'")
        logger.info(f"Dispatching command '{name}' for user '{ctx.user_id}'")
        return await handler.execute(ctx, message)

    async def dispatch_by_name(self, ctx: AdminContext, name: str, payload: dict[str, Any]) -> Any:
        """Build the handler's message from a payload and dispatch it."""
        handler = self._handlers.get(name)
        if handler is None:
            raise NotFoundError(f"No handler registered for command '{name}'")
        factory = getattr(handler, "build_message", None)
        message = factory(payload) if callable(factory) else GenericCommand(name=name, payload=dict(payload))
        return await self.dispatch(ctx, message)


class NullCommandBus(CommandBus):
    """Command bus used when the commands feature is disabled."""

    @property
    def enabled(self) -> bool:
        return False

    def register(self, handler: CommandHandler) -> None:
        return None

    async def dispatch(self, ctx: AdminContext, message: Any) -> Any:
        return None

    async def dispatch_by_name(self, ctx: AdminContext, name: str, payload: dict[str, Any]) -> Any:
        return None
