"""
NativeToolRegistry: declarations, handlers and permission metadata for the
locally implemented tools an LLM can call.

Registration is synchronous and never awaits, so on the event loop it cannot
interleave with a coroutine reading the maps. Permission enforcement is the
caller's job; the registry only resolves names and keeps bookkeeping.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Literal, Optional, Type, Union

from pydantic import BaseModel, Field, ValidationError

from mina_ai.cogs.tools.arg_schema import build_args_model, summarize_errors, validate_args

logger = logging.getLogger(__name__)

PermissionModel = Literal["open", "userRequest", "privileged"]


class ToolDeclaration(BaseModel):
    name: str
    description: str
    parameters: Optional[Dict[str, Any]] = None


class ToolMetadata(BaseModel):
    name: str
    permission_model: PermissionModel = "open"
    user_permissions: List[str] = Field(default_factory=list)
    free_will_allowed: bool = True


class NativeToolContext(BaseModel):
    user_id: str
    guild_id: Optional[str] = None
    channel_id: Optional[str] = None


ToolHandler = Callable[[Dict[str, Any], NativeToolContext], Awaitable[str]]


@dataclass
class NativeTool:
    declaration: Union[ToolDeclaration, Dict[str, Any]]
    handler: ToolHandler
    permission_model: Optional[PermissionModel] = None


class ToolNotFoundError(LookupError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Native tool {name} not found")
        self.name = name


class ToolArgumentError(ValueError):
    def __init__(self, name: str, detail: str) -> None:
        super().__init__(f"Invalid arguments for {name}: {detail}")
        self.name = name
        self.detail = detail


class NativeToolRegistry:
    def __init__(self) -> None:
        self._declarations: List[ToolDeclaration] = []
        self._handlers: Dict[str, ToolHandler] = {}
        self._metadata: Dict[str, ToolMetadata] = {}
        self._arg_models: Dict[str, Optional[Type[BaseModel]]] = {}

    def register_native_tools(self, tools: Iterable[NativeTool]) -> None:
        """
        (Re-)register tools. Idempotent: a name that already exists is removed
        and appended again, so a replaced tool moves to the end of get_tools().
        """
        for tool in tools:
            declaration = (
                tool.declaration
                if isinstance(tool.declaration, ToolDeclaration)
                else ToolDeclaration.model_validate(tool.declaration)
            )
            name = declaration.name

            self._declarations = [d for d in self._declarations if d.name != name]
            self._declarations.append(declaration)
            self._handlers[name] = tool.handler
            self._metadata[name] = ToolMetadata(
                name=name,
                permission_model=tool.permission_model or "open",
                user_permissions=[],
                free_will_allowed=True,
            )
            self._arg_models[name] = build_args_model(name, declaration.parameters)

        logger.info("Native tools registered: %d total", len(self._declarations))

    def unregister(self, name: str) -> bool:
        if name not in self._handlers:
            return False
        self._declarations = [d for d in self._declarations if d.name != name]
        self._handlers.pop(name, None)
        self._metadata.pop(name, None)
        self._arg_models.pop(name, None)
        logger.info("Native tool unregistered: %s", name)
        return True

    def get_tools(self) -> List[ToolDeclaration]:
        return list(self._declarations)

    def get_tool_schemas(self) -> List[Dict[str, Any]]:
        """Declarations in the function-calling wire shape."""
        return [d.model_dump(exclude_none=True) for d in self._declarations]

    def get_metadata(self, name: str) -> Optional[ToolMetadata]:
        return self._metadata.get(name)

    def is_native_tool(self, name: str) -> bool:
        return name in self._handlers

    async def execute_native_tool(
        self,
        name: str,
        args: Optional[Dict[str, Any]],
        context: NativeToolContext,
    ) -> str:
        # Resolve before the first await so a concurrent re-registration can't swap it mid-call.
        handler = self._handlers.get(name)
        if handler is None:
            raise ToolNotFoundError(name)

        try:
            checked = validate_args(self._arg_models.get(name), args)
        except ValidationError as exc:
            raise ToolArgumentError(name, summarize_errors(exc)) from exc

        return await handler(checked, context)
