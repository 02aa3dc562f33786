"""
Chat completion service for bot replies.
"""

import asyncio
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

import httpx

from config import BotConfig
from errors import ChatAPIError, ToolLoopExhausted, TransientHTTPError
from retry import with_retry
from schemas import ChatContext, ChatMessagePayload, ChatResponse, ToolCall, ToolSpec
from telemetry import append_bot_telemetry
from tools import execute_tool_call, tool_specs

_TRANSIENT_STATUS = (429, 500, 502, 503, 504)

PERSONA = """\
You are "Teobot", a chatty robot living on a Mastodon server.
You are a plain machine, yet clumsy and endearing, and you sometimes make mistakes.
Follow these rules when replying:

- Talk casually, like chatting with a friend.
- Keep replies to two or three sentences unless a question needs more detail.
- Never exceed 400 characters.
- Messages may start with @mentions. Ignore them.

<extraContext>
{extra_context}
</extraContext>
"""


class ChatCompletionsClient:
    """POSTs to an OpenAI-compatible /chat/completions endpoint."""

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        model: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._transport = transport
        self.call_log_path = os.getenv("LLM_CALL_LOG", "llm_call_log.txt")

    def _append_call_log(self, status: str, detail: str = "") -> None:
        try:
            p = Path(__file__).resolve().parent / self.call_log_path
            p.parent.mkdir(parents=True, exist_ok=True)
            ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
            with open(p, "a", encoding="utf-8") as f:
                f.write(f"[{ts}] status={status} model={self.model} detail={detail}\n")
        except Exception:
            # Logging must never block generation path.
            pass

    async def complete(self, messages: List[ChatMessagePayload], tools: List[ToolSpec]) -> ChatMessagePayload:
        payload: dict = {
            "model": self.model,
            "messages": [m.to_api() for m in messages],
        }
        if tools:
            payload["tools"] = [t.model_dump(exclude_none=True) for t in tools]

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                self.api_url,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key or ''}",
                    "Content-Type": "application/json",
                },
            )

        if response.status_code in _TRANSIENT_STATUS:
            self._append_call_log("retryable", f"http={response.status_code}")
            raise TransientHTTPError(response.status_code, response.text)
        if response.status_code != 200:
            self._append_call_log("fail", f"http={response.status_code}")
            raise ChatAPIError(response.text[:500], status_code=response.status_code)

        try:
            choices = response.json().get("choices") or []
        except (ValueError, AttributeError) as exc:
            raise ChatAPIError(f"malformed response: {exc}") from exc
        if not choices:
            raise ChatAPIError("empty choices in response")
        message = ChatMessagePayload.model_validate(choices[0].get("message") or {"role": ""})
        if message.role != "assistant":
            raise ChatAPIError(f"non-assistant response role={message.role!r}")
        self._append_call_log("ok", f"tool_calls={len(message.tool_calls or [])}")
        return message


class ChatService:
    """Persona, tool table and the bounded tool-calling loop."""

    def __init__(
        self,
        client: ChatCompletionsClient,
        config: BotConfig,
        tool_executor: Optional[Callable[[ToolCall], str]] = None,
    ):
        self.client = client
        self.config = config
        self.max_tool_iterations = config.max_tool_iterations
        self._tool_executor = tool_executor or (lambda call: execute_tool_call(call, config))

    @classmethod
    def from_config(cls, config: BotConfig) -> "ChatService":
        client = ChatCompletionsClient(
            api_url=config.chat_api_url,
            api_key=config.chat_api_key,
            model=config.chat_model,
            timeout=config.llm_timeout_sec,
        )
        return cls(client, config)

    def new_chat_context(self, extra_context: str = "") -> ChatContext:
        return ChatContext(
            system_message=PERSONA.format(extra_context=extra_context),
            history=[],
            tools=tool_specs(self.config),
        )

    def _run_tool(self, call: ToolCall) -> str:
        result = self._tool_executor(call)
        print(f"[llm] tool call {call.id}<{call.function.name}>({call.function.arguments}) => {result[:200]}")
        append_bot_telemetry(
            "tool_call",
            {"name": call.function.name, "ok": not result.startswith("Error:")},
        )
        return result

    @staticmethod
    def _image_url_from(call: ToolCall, result: str) -> Optional[str]:
        if call.function.name != "gen_image":
            return None
        try:
            return json.loads(result).get("url")
        except (ValueError, AttributeError):
            return None

    async def chat(self, context: ChatContext, message: ChatMessagePayload) -> ChatResponse:
        """Send ``message`` on top of ``context`` and resolve tool calls until a final answer.

        Tool calls from a single model turn run concurrently; their results are
        appended in the order the model issued them. Raises ``ToolLoopExhausted``
        if the model still wants tools after ``max_tool_iterations`` turns.
        """
        system = ChatMessagePayload(role="system", content=context.system_message)
        history = [*context.history, message]
        image_urls: List[str] = []

        for iteration in range(1, self.max_tool_iterations + 1):
            messages = [system, *history]
            reply = await with_retry(
                "chat",
                lambda: self.client.complete(messages, context.tools),
                attempts=self.config.retry_attempts,
                backoff_sec=self.config.retry_backoff_sec,
            )
            history.append(reply)
            calls = reply.tool_calls or []
            print(f"[llm] iteration={iteration} content_len={len(reply.content or '')} tool_calls={[c.function.name for c in calls]}")
            if not calls:
                return ChatResponse(message=reply, image_urls=image_urls, history=history)

            results = await asyncio.gather(*(asyncio.to_thread(self._run_tool, call) for call in calls))
            for call, result in zip(calls, results):
                history.append(ChatMessagePayload(role="tool", content=result, tool_call_id=call.id))
                url = self._image_url_from(call, result)
                if url:
                    image_urls.append(url)

        raise ToolLoopExhausted(self.max_tool_iterations)
