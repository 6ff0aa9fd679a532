"""Tests for the OpenAI-compatible streaming adapter."""

import copy
import json
from types import SimpleNamespace

import pytest

from devconsole.models import ProposedAction
from devconsole.provider import FUNCTION_DECLARATIONS, FunctionResponse, OpenAIConversation


def content(value):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=value, tool_calls=None))])


def tool_delta(index, id=None, name=None, arguments=None):
    tc = SimpleNamespace(index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments))
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=None, tool_calls=[tc]))])


class FakeCompletions:
    def __init__(self, *streams):
        self.streams = list(streams)
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(copy.deepcopy(kwargs))
        chunks = self.streams.pop(0)

        async def stream():
            for chunk in chunks:
                yield chunk

        return stream()


def conversation(*streams):
    completions = FakeCompletions(*streams)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAIConversation(client, "test-model", "You are a WordPress assistant."), completions


async def collect(conv, turn):
    return [chunk async for chunk in conv.send_stream(turn)]


def test_every_action_is_declared():
    names = {fn["name"] for fn in FUNCTION_DECLARATIONS}
    assert "delete_asset" in names and "restore_file" in names
    assert len(names) == len(FUNCTION_DECLARATIONS)


async def test_text_is_streamed_and_recorded():
    conv, completions = conversation([content("Hel"), SimpleNamespace(choices=[]), content("lo")])

    chunks = await collect(conv, "hi")

    assert [c.text for c in chunks] == ["Hel", "lo"]
    request = completions.requests[0]
    assert request["stream"] is True
    assert request["model"] == "test-model"
    assert [m["role"] for m in request["messages"]] == ["system", "user"]
    assert conv.messages[-1] == {"role": "assistant", "content": "Hello"}


async def test_tool_call_assembled_from_deltas():
    conv, completions = conversation(
        [
            content("Deleting."),
            tool_delta(0, id="call_1", name="delete_asset", arguments='{"assetType": "plu'),
            tool_delta(0, arguments='gin", "assetIdentifier": "hello-dolly/hello.php"}'),
        ],
        [content("Done.")],
    )

    chunks = await collect(conv, "delete hello dolly")

    assert chunks[-1].function_calls == [ProposedAction(
        name="delete_asset", args={"assetType": "plugin", "assetIdentifier": "hello-dolly/hello.php"},
    )]

    await collect(conv, FunctionResponse(name="delete_asset", response={"status": "deleted"}))

    sent = completions.requests[1]["messages"]
    assert sent[-2]["tool_calls"][0]["id"] == "call_1"
    assert sent[-1] == {"role": "tool", "tool_call_id": "call_1", "content": json.dumps({"status": "deleted"})}


async def test_only_first_call_is_recorded():
    conv, _ = conversation([
        tool_delta(0, id="call_1", name="get_db_tables", arguments="{}"),
        tool_delta(1, id="call_2", name="get_debug_log", arguments="{}"),
    ])

    chunks = await collect(conv, "look")

    assert [c.name for c in chunks[-1].function_calls] == ["get_db_tables", "get_debug_log"]
    assert [tc["id"] for tc in conv.messages[-1]["tool_calls"]] == ["call_1"]


async def test_cancelled_call_is_folded_into_text():
    conv, completions = conversation(
        [content("Deleting."), tool_delta(0, id="call_1", name="delete_asset", arguments="{}")],
        [content("Okay.")],
    )
    await collect(conv, "delete it")

    await collect(conv, "actually, don't")

    sent = completions.requests[1]["messages"]
    assistant = sent[-2]
    assert "tool_calls" not in assistant
    assert "delete_asset" in assistant["content"] and "not executed" in assistant["content"]
    assert sent[-1] == {"role": "user", "content": "actually, don't"}


async def test_malformed_arguments_raise():
    conv, _ = conversation([tool_delta(0, id="call_1", name="delete_asset", arguments='{"assetType": ')])

    with pytest.raises(ValueError, match="Malformed"):
        await collect(conv, "delete")


async def test_function_response_without_open_call():
    conv, completions = conversation()

    with pytest.raises(ValueError):
        await collect(conv, FunctionResponse(name="ping", response={}))
    assert completions.requests == []


async def test_failed_call_is_folded_with_its_error():
    conv, completions = conversation(
        [tool_delta(0, id="call_1", name="delete_asset", arguments="{}")],
        [content("Sorry.")],
    )
    await collect(conv, "delete it")

    conv.abandon_call("Action `delete_asset` was executed but failed: Permission denied")
    await collect(conv, "what happened?")

    assistant = completions.requests[1]["messages"][-2]
    assert "tool_calls" not in assistant
    assert assistant["content"].endswith("(Action `delete_asset` was executed but failed: Permission denied)")
    assert "not executed" not in assistant["content"]


def test_abandon_without_open_call_is_a_no_op():
    conv, _ = conversation()
    conv.abandon_call("nothing to settle")
    assert [m["role"] for m in conv.messages] == ["system"]
