import pytest

from feather_core.domain.conversation import MessageStore
from feather_core.domain.models import ChatMessage, ImagePart, TextPart


def test_store_starts_with_system_message():
    store = MessageStore("be helpful")
    assert len(store) == 1
    assert store.system.role == "system"
    assert store.system.content == "be helpful"


def test_set_system_replaces_index_zero():
    store = MessageStore("v1")
    store.append_user("hi")
    store.set_system("v2")
    msgs = store.snapshot()
    assert len(msgs) == 2
    assert msgs[0].content == "v2"
    assert msgs[1].content == "hi"


def test_append_rejects_system_role():
    store = MessageStore()
    with pytest.raises(ValueError):
        store.append(ChatMessage(role="system", content="nope"))


def test_append_user_with_images_builds_parts():
    store = MessageStore()
    msg = store.append_user("what is this?", images=["https://x/a.png", "data:image/png;base64,AAA"])
    assert isinstance(msg.content, list)
    assert isinstance(msg.content[0], TextPart)
    assert [p.url for p in msg.content[1:] if isinstance(p, ImagePart)] == [
        "https://x/a.png",
        "data:image/png;base64,AAA",
    ]
    assert msg.text_content() == "what is this?"
    assert msg.to_dict()["content"][1] == {"type": "image_url", "image_url": {"url": "https://x/a.png"}}


def test_snapshot_is_a_copy():
    store = MessageStore("s")
    snap = store.snapshot()
    store.append_assistant("a")
    assert len(snap) == 1
    assert [m.role for m in store] == ["system", "assistant"]
