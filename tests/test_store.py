"""Tests for the aiosqlite chat store."""

from __future__ import annotations

import pytest

from chatbridge.llm.types import (
    ROLE_ASSISTANT,
    ROLE_TOOL,
    ROLE_USER,
    ImagePart,
    Message,
    TextPart,
    ToolCall,
)
from chatbridge.session.store import SCHEMA_VERSION, ChatStore


@pytest.fixture
async def store(tmp_path):
    s = ChatStore(str(tmp_path / "history.db"))
    await s.init()
    yield s
    await s.close()


class TestSchema:
    async def test_version_recorded(self, store):
        assert await store.get_schema_version() == SCHEMA_VERSION

    async def test_reinit_is_idempotent(self, tmp_path):
        path = str(tmp_path / "again.db")
        for _ in range(2):
            s = ChatStore(path)
            await s.init()
            assert await s.get_schema_version() == SCHEMA_VERSION
            await s.close()


class TestChats:
    async def test_create_get_list(self, store):
        chat_id = await store.create_chat("Weather", {"model": "gpt-4o"})
        chat = await store.get_chat(chat_id)
        assert chat["title"] == "Weather"
        assert chat["metadata"] == {"model": "gpt-4o"}
        assert chat["message_count"] == 0

        chats = await store.list_chats()
        assert [c["chat_id"] for c in chats] == [chat_id]

    async def test_rename(self, store):
        chat_id = await store.create_chat()
        await store.rename_chat(chat_id, "Renamed")
        assert (await store.get_chat(chat_id))["title"] == "Renamed"

    async def test_delete(self, store):
        chat_id = await store.create_chat()
        await store.save(chat_id, Message(role=ROLE_USER, content="hi"))
        assert await store.delete_chat(chat_id) is True
        assert await store.get_chat(chat_id) is None
        assert await store.load(chat_id) == []
        assert await store.delete_chat(chat_id) is False

    async def test_missing_chat(self, store):
        assert await store.get_chat("nope") is None


class TestMessages:
    async def test_save_and_load_in_order(self, store):
        chat_id = await store.create_chat()
        call = ToolCall(id="c1", name="search", arguments='{"q": "x"}')
        msgs = [
            Message(role=ROLE_USER, content="find x"),
            Message(role=ROLE_ASSISTANT, content="", tool_calls=[call]),
            Message(role=ROLE_TOOL, content="found", tool_call_id="c1", tool_name="search"),
            Message(role=ROLE_ASSISTANT, content="Here it is"),
        ]
        for m in msgs:
            await store.save(chat_id, m)

        loaded = await store.load(chat_id)
        assert [m.role for m in loaded] == ["user", "assistant", "tool", "assistant"]
        assert loaded[1].tool_calls[0].to_dict() == call.to_dict()
        assert loaded[2].tool_call_id == "c1"
        assert loaded[2].tool_name == "search"
        assert [m.message_id for m in loaded] == [m.message_id for m in msgs]
        assert (await store.get_chat(chat_id))["message_count"] == 4

    async def test_save_same_id_updates_in_place(self, store):
        chat_id = await store.create_chat()
        first = Message(role=ROLE_ASSISTANT, content="provisional")
        await store.save(chat_id, first)
        await store.save(chat_id, Message(role=ROLE_USER, content="next"))

        revised = Message(role=ROLE_ASSISTANT, content="final", message_id=first.message_id)
        await store.save(chat_id, revised)

        loaded = await store.load(chat_id)
        assert [m.text for m in loaded] == ["final", "next"]

    async def test_save_creates_chat_row(self, store):
        await store.save("implicit", Message(role=ROLE_USER, content="hello"))
        assert (await store.get_chat("implicit"))["message_count"] == 1

    async def test_multimodal_content_survives(self, store):
        chat_id = await store.create_chat()
        msg = Message(role=ROLE_USER, content=[TextPart("look"), ImagePart(data="AAAA", media_type="image/gif")])
        await store.save(chat_id, msg)
        loaded = (await store.load(chat_id))[0]
        assert loaded.content == [TextPart("look"), ImagePart(data="AAAA", media_type="image/gif")]

    async def test_debug_blob_kept_across_updates(self, store):
        chat_id = await store.create_chat()
        msg = Message(role=ROLE_ASSISTANT, content="a")
        await store.save(chat_id, msg, debug={"sequence": [1]})
        msg.content = "ab"
        await store.save(chat_id, msg)

        rows = await store.get_debug(chat_id)
        assert rows == [{"message_id": msg.message_id, "debug": {"sequence": [1]}}]
        assert (await store.load(chat_id))[0].text == "ab"
