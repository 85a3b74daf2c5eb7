from __future__ import annotations

import pytest

from mina_ai.storage import AiResponderSettings, Store


@pytest.mark.asyncio
async def test_settings_default_when_missing(store) -> None:
    settings = await store.get_ai_responder_settings("unknown")
    assert settings == AiResponderSettings()
    assert settings.enabled is True
    assert settings.mention_only is True


@pytest.mark.asyncio
async def test_settings_round_trip(store) -> None:
    saved = AiResponderSettings(
        enabled=False, mention_only=False, free_will_channels=["1", "2"], updated_by="9", updated_at=1700000000
    )
    await store.update_ai_responder_settings(123, saved)
    assert await store.get_ai_responder_settings("123") == saved


@pytest.mark.asyncio
async def test_init_creates_parent_directory(tmp_path) -> None:
    s = Store(str(tmp_path / "nested" / "dir" / "bot.db"))
    await s.init()
    assert (tmp_path / "nested" / "dir" / "bot.db").exists()


@pytest.mark.asyncio
async def test_memories_scoped_by_user_and_guild(store) -> None:
    await store.store_memory(user_id="u1", guild_id="g1", key="user_fact", value="likes dogs")
    await store.store_memory(user_id="u1", guild_id=None, key="user_fact", value="likes cats")
    await store.store_memory(user_id="u2", guild_id="g1", key="user_fact", value="likes birds")

    rows = await store.recall_memories(user_id="u1", guild_id="g1", query="likes")
    assert [r["value"] for r in rows] == ["likes dogs"]

    dm_rows = await store.recall_memories(user_id="u1", guild_id=None)
    assert [r["value"] for r in dm_rows] == ["likes cats"]


@pytest.mark.asyncio
async def test_recall_orders_by_importance_and_limits(store) -> None:
    await store.store_memory(user_id="u1", guild_id="g1", key="k", value="low", importance=1)
    await store.store_memory(user_id="u1", guild_id="g1", key="k", value="high", importance=9)
    await store.store_memory(user_id="u1", guild_id="g1", key="k", value="mid", importance=5)

    rows = await store.recall_memories(user_id="u1", guild_id="g1", limit=2)
    assert [r["value"] for r in rows] == ["high", "mid"]


@pytest.mark.asyncio
async def test_update_and_delete_by_match(store) -> None:
    await store.store_memory(user_id="u1", guild_id="g1", key="user_fact", value="favourite colour is blue")

    updated = await store.update_memory_by_match(
        description="colour", new_value="favourite colour is green", user_id="u1", guild_id="g1"
    )
    assert updated.found is True
    assert updated.old_value == "favourite colour is blue"
    assert updated.new_value == "favourite colour is green"

    deleted = await store.delete_memory_by_match(description="green", user_id="u1", guild_id="g1")
    assert deleted.found is True
    assert deleted.old_value == "favourite colour is green"
    assert await store.recall_memories(user_id="u1", guild_id="g1") == []


@pytest.mark.asyncio
async def test_match_misses_report_not_found(store) -> None:
    miss = await store.update_memory_by_match(description="nothing", new_value="x", user_id="u1", guild_id="g1")
    assert miss.found is False
    assert (await store.delete_memory_by_match(description="nothing", user_id="u1", guild_id="g1")).found is False


@pytest.mark.asyncio
async def test_match_treats_like_wildcards_literally(store) -> None:
    await store.store_memory(user_id="u1", guild_id="g1", key="k", value="likes tea")

    assert (await store.delete_memory_by_match(description="%", user_id="u1", guild_id="g1")).found is False
    assert await store.recall_memories(user_id="u1", guild_id="g1", query="t_a") == []

    await store.store_memory(user_id="u1", guild_id="g1", key="k", value="scored 50% on the test")
    rows = await store.recall_memories(user_id="u1", guild_id="g1", query="50%")
    assert [r["value"] for r in rows] == ["scored 50% on the test"]
    assert (await store.delete_memory_by_match(description="%", user_id="u1", guild_id="g1")).old_value == (
        "scored 50% on the test"
    )
