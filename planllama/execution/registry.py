"""In-memory registry of job handlers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

LOGGER = logging.getLogger(__name__)

JobHandler = Callable[[Any], Any]


@dataclass
class HandlerDescriptor:
    name: str
    handler: JobHandler
    options: Optional[Dict[str, Any]] = None
    exec_mode: Optional[str] = None


class HandlerRegistry:
    """Job name -> handler, kept in registration order.

    Registering a name again replaces the descriptor but keeps its position.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, HandlerDescriptor] = {}

    def register(
        self,
        name: str,
        handler: JobHandler,
        options: Optional[Dict[str, Any]] = None,
        *,
        exec_mode: Optional[str] = None,
    ) -> HandlerDescriptor:
        descriptor = HandlerDescriptor(name=name, handler=handler, options=options, exec_mode=exec_mode)
        replaced = name in self._handlers
        self._handlers[name] = descriptor
        LOGGER.debug("%s handler for %s", "Replaced" if replaced else "Registered", name)
        return descriptor

    def resolve(self, name: str) -> Optional[HandlerDescriptor]:
        return self._handlers.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def list_handlers(self) -> List[HandlerDescriptor]:
        return list(self._handlers.values())
