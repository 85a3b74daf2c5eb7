import logging
from typing import Any, Dict, List, Optional

from mina_ai.cogs.tools.registry import NativeTool, NativeToolContext, NativeToolRegistry
from mina_ai.storage import Store

logger = logging.getLogger(__name__)

MEMORY_TOOLS: List[Dict[str, Any]] = [
    {
        "name": "remember_fact",
        "description": (
            "Store a new fact about the user. Use when the user shares something worth remembering "
            "(preferences, facts about themselves, important details)."
        ),
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "fact": {"type": "STRING", "description": 'The fact to remember (e.g. "likes dogs").'},
                "context": {"type": "STRING", "description": "Brief context about when/why this was shared."},
            },
            "required": ["fact"],
        },
    },
    {
        "name": "update_memory",
        "description": (
            "Update an existing memory when the user corrects a previously stored fact "
            '("actually I prefer X now").'
        ),
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "description": {"type": "STRING", "description": "What was previously remembered."},
                "new_value": {"type": "STRING", "description": "The updated information."},
            },
            "required": ["description", "new_value"],
        },
    },
    {
        "name": "forget_memory",
        "description": 'Delete a specific memory when the user asks to forget something ("forget that I like X").',
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "description": {"type": "STRING", "description": "Description of the memory to delete."},
            },
            "required": ["description"],
        },
    },
    {
        "name": "recall_memories",
        "description": "Search stored memories about a topic or the user.",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "query": {"type": "STRING", "description": "What to search for in stored memories."},
                "limit": {"type": "INTEGER", "description": "Maximum number of memories to return (default: 5)."},
            },
            "required": ["query"],
        },
    },
]


def _text(args: Dict[str, Any], key: str) -> Optional[str]:
    value = args.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class MemorySkill:
    """Native tools that let the model manage what it remembers about a user."""

    def __init__(self, store: Optional[Store]) -> None:
        self.store = store

    def register(self, registry: NativeToolRegistry) -> None:
        handlers = [self.remember_fact, self.update_memory, self.forget_memory, self.recall_memories]
        registry.register_native_tools(
            NativeTool(declaration=decl, handler=handler) for decl, handler in zip(MEMORY_TOOLS, handlers)
        )

    async def remember_fact(self, args: Dict[str, Any], context: NativeToolContext) -> str:
        if not self.store:
            return "Memory service is not available."
        fact = _text(args, "fact")
        if not fact:
            return 'Error: "fact" is required and must be a non-empty string.'

        await self.store.store_memory(
            user_id=context.user_id,
            guild_id=context.guild_id,
            key="user_fact",
            value=fact,
            importance=6,
            context=_text(args, "context") or "shared in conversation",
        )
        logger.info("Stored memory for user %s (guild=%s)", context.user_id, context.guild_id)
        return f'Remembered: "{fact}"'

    async def update_memory(self, args: Dict[str, Any], context: NativeToolContext) -> str:
        if not self.store:
            return "Memory service is not available."
        description = _text(args, "description")
        if not description:
            return 'Error: "description" is required and must be a non-empty string.'
        new_value = _text(args, "new_value")
        if not new_value:
            return 'Error: "new_value" is required and must be a non-empty string.'

        result = await self.store.update_memory_by_match(
            description=description, new_value=new_value, user_id=context.user_id, guild_id=context.guild_id
        )
        if result.found:
            return f'Updated memory: "{result.old_value}" → "{result.new_value}"'
        return f'No matching memory found for "{description}". Nothing was updated.'

    async def forget_memory(self, args: Dict[str, Any], context: NativeToolContext) -> str:
        if not self.store:
            return "Memory service is not available."
        description = _text(args, "description")
        if not description:
            return 'Error: "description" is required and must be a non-empty string.'

        result = await self.store.delete_memory_by_match(
            description=description, user_id=context.user_id, guild_id=context.guild_id
        )
        if result.found:
            return f'Forgot: "{result.old_value}"'
        return f'No matching memory found for "{description}". Nothing was deleted.'

    async def recall_memories(self, args: Dict[str, Any], context: NativeToolContext) -> str:
        if not self.store:
            return "Memory service is not available."
        query = _text(args, "query")
        if not query:
            return 'Error: "query" is required and must be a non-empty string.'
        raw_limit = args.get("limit")
        limit = raw_limit if isinstance(raw_limit, int) and not isinstance(raw_limit, bool) else 5
        limit = max(1, min(10, limit))

        rows = await self.store.recall_memories(
            user_id=context.user_id, guild_id=context.guild_id, query=query, limit=limit
        )
        if not rows:
            return f'No memories found matching "{query}".'
        lines = [f"{i}. {row['key']}: {row['value']}" for i, row in enumerate(rows, start=1)]
        return f"Found {len(rows)} memories:\n" + "\n".join(lines)
