import asyncio
import json
import time

import httpx
import pytest

from conftest import FakeChatClient, assistant, tool_call
from errors import ChatAPIError, ToolLoopExhausted, TransientHTTPError
from llm_service import ChatCompletionsClient, ChatService
from schemas import ChatMessagePayload, ToolFunctionSpec, ToolSpec

USER = ChatMessagePayload(role="user", content="hi", name="alice")


def test_chat_without_tools_returns_first_answer(config):
    client = FakeChatClient(replies=[assistant("hey there")])
    service = ChatService(client, config)
    context = service.new_chat_context("<threads>[]</threads>")

    response = asyncio.run(service.chat(context, USER))

    assert response.message.content == "hey there"
    assert response.image_urls == []
    sent = client.requests[0]
    assert sent[0].role == "system"
    assert "<threads>[]</threads>" in sent[0].content
    assert sent[1] == USER
    assert [m.role for m in response.history] == ["user", "assistant"]


def test_tool_results_keep_call_order(config):
    def executor(call):
        # The first call finishes last.
        time.sleep(0.2 if call.function.name == "slow" else 0.0)
        return f"result of {call.function.name}"

    client = FakeChatClient(replies=[
        assistant(tool_calls=[tool_call("c1", "slow"), tool_call("c2", "fast")]),
        assistant("done"),
    ])
    service = ChatService(client, config, tool_executor=executor)

    response = asyncio.run(service.chat(service.new_chat_context(), USER))

    tool_messages = [m for m in response.history if m.role == "tool"]
    assert [(m.tool_call_id, m.content) for m in tool_messages] == [
        ("c1", "result of slow"),
        ("c2", "result of fast"),
    ]
    assert [m.role for m in client.requests[1]] == ["system", "user", "assistant", "tool", "tool"]
    assert response.message.content == "done"


def test_tool_loop_is_bounded(config):
    looping = [assistant(tool_calls=[tool_call(f"c{i}", "rand")]) for i in range(10)]
    client = FakeChatClient(replies=looping)
    service = ChatService(client, config, tool_executor=lambda call: "4")

    with pytest.raises(ToolLoopExhausted):
        asyncio.run(service.chat(service.new_chat_context(), USER))

    assert len(client.requests) == config.max_tool_iterations


def test_generated_image_urls_are_collected(config):
    client = FakeChatClient(replies=[
        assistant(tool_calls=[tool_call("c1", "gen_image", '{"prompt": "a robot"}')]),
        assistant("look at this"),
    ])
    service = ChatService(
        client, config, tool_executor=lambda call: json.dumps({"url": "https://img.test/robot.png"})
    )

    response = asyncio.run(service.chat(service.new_chat_context(), USER))

    assert response.image_urls == ["https://img.test/robot.png"]


def test_transient_llm_errors_are_retried(config):
    client = FakeChatClient(replies=[TransientHTTPError(503, "busy"), assistant("back")])
    service = ChatService(client, config)

    response = asyncio.run(service.chat(service.new_chat_context(), USER))

    assert response.message.content == "back"
    assert len(client.requests) == 2


def test_new_chat_context_lists_image_tool_only_when_enabled(config):
    names = [t.function.name for t in ChatService(FakeChatClient(), config).new_chat_context().tools]
    assert names == ["get_current_date_and_time", "get_current_version", "get_weather_forecast", "rand"]

    enabled = config.model_copy(update={"image_generation_enabled": True})
    names = [t.function.name for t in ChatService(FakeChatClient(), enabled).new_chat_context().tools]
    assert names[-1] == "gen_image"


def _completions_client(handler) -> ChatCompletionsClient:
    return ChatCompletionsClient(
        "https://llm.test/v1/chat/completions",
        "sk-test",
        "gpt-test",
        transport=httpx.MockTransport(handler),
    )


def test_completions_client_parses_tool_calls():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "choices": [{
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [{
                        "id": "call_1",
                        "type": "function",
                        "function": {"name": "rand", "arguments": "{\"min\": 1}"},
                    }],
                },
                "finish_reason": "tool_calls",
            }],
        })

    tools = [ToolSpec(function=ToolFunctionSpec(name="rand", description="dice"))]
    message = asyncio.run(_completions_client(handler).complete([USER], tools))

    assert message.role == "assistant"
    assert message.tool_calls[0].function.name == "rand"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "gpt-test"
    assert seen["body"]["messages"] == [{"role": "user", "content": "hi", "name": "alice"}]
    assert seen["body"]["tools"] == [{"type": "function", "function": {"name": "rand", "description": "dice"}}]


def test_completions_client_omits_empty_tool_list():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": "ok"}}]})

    asyncio.run(_completions_client(handler).complete([USER], []))
    assert "tools" not in seen["body"]


@pytest.mark.parametrize(
    "status_code, body, error",
    [
        (429, {"error": "slow down"}, TransientHTTPError),
        (503, {"error": "down"}, TransientHTTPError),
        (401, {"error": "bad key"}, ChatAPIError),
        (200, {"choices": []}, ChatAPIError),
        (200, {"choices": [{"message": {"role": "user", "content": "?"}}]}, ChatAPIError),
    ],
)
def test_completions_client_error_mapping(status_code, body, error):
    client = _completions_client(lambda request: httpx.Response(status_code, json=body))

    with pytest.raises(error):
        asyncio.run(client.complete([USER], []))
