"""HTTP transport helpers for the LLM client.

Request encoding turns the provider-neutral conversation into each wire
format; decoders turn each provider's streamed JSON payloads into
:mod:`chatloop.core.events` values.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

from chatloop.core.conversation import (
    Message,
    TextPart,
    ThoughtPart,
    ToolCallPart,
    ToolResultPart,
)
from chatloop.core.errors import BackendUnavailable
from chatloop.core.events import (
    ReasoningDelta,
    StreamEvent,
    TextDelta,
    ToolCallArgsDelta,
    ToolCallStart,
)
from chatloop.core.tools.base import ToolSchema

from .types import ApiStyle, LLMSettings, StreamOptions

logger = logging.getLogger(__name__)

OPENROUTER_REFERER = "https://github.com/chatloop/chatloop"
OPENROUTER_TITLE = "chatloop"

GEMINI_THINKING_BUDGETS: dict[str, int] = {
    "off": 0,
    "auto": -1,
    "low": 2048,
    "medium": 8192,
    "high": 24576,
}


def build_endpoint(settings: LLMSettings) -> str:
    base = settings.base_url.rstrip("/")
    if settings.api == "responses":
        return f"{base}/responses"
    if settings.api == "gemini":
        return f"{base}/models/{settings.model}:streamGenerateContent?alt=sse"
    return f"{base}/chat/completions"


def build_headers(settings: LLMSettings) -> dict[str, str]:
    headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
    if settings.api == "gemini":
        if settings.api_key:
            headers["x-goog-api-key"] = settings.api_key
    elif settings.api_key:
        headers["Authorization"] = f"Bearer {settings.api_key}"
    if settings.provider.lower() == "openrouter":
        headers["HTTP-Referer"] = OPENROUTER_REFERER
        headers["X-Title"] = OPENROUTER_TITLE
    if settings.extra_headers:
        headers.update(settings.extra_headers)
    return headers


def build_payload(
    settings: LLMSettings,
    history: Sequence[Message],
    tool_schemas: Sequence[ToolSchema],
    options: StreamOptions,
) -> dict[str, Any]:
    if settings.api == "responses":
        return _responses_payload(settings, history, tool_schemas, options)
    if settings.api == "gemini":
        return _gemini_payload(history, tool_schemas, options)
    return _chat_payload(settings, history, tool_schemas, options)


# ----------------------------------------------------------------------
# Chat Completions
# ----------------------------------------------------------------------
def _chat_payload(
    settings: LLMSettings,
    history: Sequence[Message],
    tool_schemas: Sequence[ToolSchema],
    options: StreamOptions,
) -> dict[str, Any]:
    provider = settings.provider.lower()
    payload: dict[str, Any] = {
        "model": settings.model,
        "stream": True,
        "messages": encode_chat_messages(
            history,
            system_prompt=options.system_prompt,
            include_reasoning=provider == "openrouter",
        ),
    }
    if tool_schemas:
        payload["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": schema.name,
                    "description": schema.description,
                    "parameters": schema.input_schema,
                },
            }
            for schema in tool_schemas
        ]
    if provider == "openrouter":
        if options.thinking_budget is not None:
            payload["reasoning"] = {"max_tokens": options.thinking_budget}
        elif options.thinking:
            payload["reasoning"] = {"effort": options.thinking}
    elif options.thinking:
        payload["reasoning_effort"] = options.thinking
    if options.output_tokens is not None:
        payload["max_tokens"] = options.output_tokens
    if options.temperature is not None:
        payload["temperature"] = options.temperature
    return payload


def encode_chat_messages(
    history: Sequence[Message],
    *,
    system_prompt: str | None = None,
    include_reasoning: bool = False,
) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for message in history:
        if message.role == "user":
            messages.append({"role": "user", "content": message.text()})
        elif message.role == "tool-result":
            for part in message.parts:
                if isinstance(part, ToolResultPart):
                    messages.append(
                        {
                            "role": "tool",
                            "tool_call_id": part.call_id or "",
                            "content": _tool_output_text(part),
                        }
                    )
        else:
            entry = _chat_assistant_entry(message, include_reasoning=include_reasoning)
            if entry is not None:
                messages.append(entry)
    return messages


def _chat_assistant_entry(message: Message, *, include_reasoning: bool) -> dict[str, Any] | None:
    text = message.text()
    calls = message.tool_calls()
    if not text and not calls:
        return None
    thoughts = [part for part in message.parts if isinstance(part, ThoughtPart)]
    entry: dict[str, Any] = {"role": "assistant", "content": text or None}
    if calls:
        entry["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": json.dumps(call.args)},
            }
            for call in calls
        ]
    if include_reasoning and thoughts:
        entry["reasoning"] = "".join(part.content for part in thoughts)
        details = [
            {"type": "reasoning.text", "text": part.content, "signature": part.signature}
            for part in thoughts
            if part.signature is not None
        ]
        if details:
            entry["reasoning_details"] = details
    return entry


def _tool_output_text(part: ToolResultPart) -> str:
    return f"Error: {part.result}" if part.is_error else part.result


class ChatCompletionsDecoder:
    """Decode OpenAI-compatible ``chat.completion.chunk`` payloads."""

    def __init__(self) -> None:
        self.finish_reason: str | None = None
        self.usage: dict[str, int] | None = None
        self._keys: dict[int, str] = {}

    def decode(self, payload: dict[str, Any]) -> list[StreamEvent]:
        error = payload.get("error")
        if error:
            raise BackendUnavailable(_error_message(error))
        usage = _parse_usage(payload.get("usage"))
        if usage:
            self.usage = usage
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return []
        choice = choices[0]
        events: list[StreamEvent] = []
        delta = choice.get("delta")
        if isinstance(delta, dict):
            events.extend(self._reasoning_events(delta))
            content = delta.get("content")
            if isinstance(content, str) and content:
                events.append(TextDelta(content))
            tool_calls = delta.get("tool_calls")
            if isinstance(tool_calls, list):
                for position, call in enumerate(tool_calls):
                    if isinstance(call, dict):
                        events.extend(self._tool_call_events(call, position))
        finish = choice.get("finish_reason")
        if isinstance(finish, str) and finish:
            self.finish_reason = finish
        return events

    def _reasoning_events(self, delta: dict[str, Any]) -> list[StreamEvent]:
        details = delta.get("reasoning_details")
        if isinstance(details, list) and details:
            events: list[StreamEvent] = []
            for detail in details:
                if not isinstance(detail, dict) or detail.get("type") == "reasoning.encrypted":
                    continue
                text = detail.get("text") or detail.get("summary") or ""
                signature = detail.get("signature")
                if text or signature:
                    events.append(ReasoningDelta(str(text), signature if isinstance(signature, str) else None))
            return events
        reasoning = delta.get("reasoning") or delta.get("reasoning_content")
        if isinstance(reasoning, str) and reasoning:
            return [ReasoningDelta(reasoning)]
        return []

    def _tool_call_events(self, call: dict[str, Any], position: int) -> list[StreamEvent]:
        index = call.get("index", position)
        function = call.get("function") if isinstance(call.get("function"), dict) else {}
        arguments = function.get("arguments")
        events: list[StreamEvent] = []
        key = self._keys.get(index)
        if key is None:
            key = str(call.get("id") or f"call_{index}")
            self._keys[index] = key
            events.append(ToolCallStart(key, str(function.get("name") or "")))
        elif function.get("name"):
            events.append(ToolCallStart(key, str(function["name"])))
        if isinstance(arguments, str) and arguments:
            events.append(ToolCallArgsDelta(key, arguments))
        return events


# ----------------------------------------------------------------------
# Responses API
# ----------------------------------------------------------------------
def _responses_payload(
    settings: LLMSettings,
    history: Sequence[Message],
    tool_schemas: Sequence[ToolSchema],
    options: StreamOptions,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "model": settings.model,
        "stream": True,
        "input": encode_responses_input(history),
    }
    if tool_schemas:
        payload["tools"] = [
            {
                "type": "function",
                "name": schema.name,
                "description": schema.description,
                "parameters": schema.input_schema,
            }
            for schema in tool_schemas
        ]
    if options.thinking_budget is not None and settings.provider.lower() == "openrouter":
        payload["reasoning"] = {"max_tokens": options.thinking_budget}
    elif options.thinking:
        payload["reasoning"] = {"effort": options.thinking, "summary": "auto"}
    if options.output_tokens is not None:
        payload["max_output_tokens"] = options.output_tokens
    if options.temperature is not None:
        payload["temperature"] = options.temperature
    if options.system_prompt:
        payload["instructions"] = options.system_prompt
    return payload


def encode_responses_input(history: Sequence[Message]) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for message in history:
        if message.role == "user":
            items.append({"type": "message", "role": "user", "content": message.text()})
            continue
        if message.role == "tool-result":
            for part in message.parts:
                if isinstance(part, ToolResultPart):
                    items.append(
                        {
                            "type": "function_call_output",
                            "call_id": part.call_id or "",
                            "output": _tool_output_text(part),
                        }
                    )
            continue
        buffered: list[str] = []
        for part in message.parts:
            if isinstance(part, TextPart):
                buffered.append(part.content)
            elif isinstance(part, ToolCallPart):
                if buffered:
                    items.append({"type": "message", "role": "assistant", "content": "".join(buffered)})
                    buffered = []
                items.append(
                    {
                        "type": "function_call",
                        "call_id": part.id,
                        "name": part.name,
                        "arguments": json.dumps(part.args),
                    }
                )
        if buffered:
            items.append({"type": "message", "role": "assistant", "content": "".join(buffered)})
    return items


_RESPONSES_REASONING_EVENTS = {
    "response.reasoning.delta",
    "response.reasoning_text.delta",
    "response.reasoning_summary_text.delta",
}


class ResponsesDecoder:
    """Decode Responses API stream events."""

    def __init__(self) -> None:
        self.finish_reason: str | None = None
        self.usage: dict[str, int] | None = None
        self._item_keys: dict[str, str] = {}
        self._fragments: dict[str, int] = {}

    def decode(self, payload: dict[str, Any]) -> list[StreamEvent]:
        event_type = str(payload.get("type", ""))
        if event_type in {"error", "response.error", "response.failed"}:
            response_block = payload.get("response")
            error = payload.get("error")
            if error is None and isinstance(response_block, dict):
                error = response_block.get("error")
            raise BackendUnavailable(_error_message(error or "Unknown Responses API error"))

        if event_type == "response.output_text.delta":
            text = _delta_text(payload.get("delta"))
            return [TextDelta(text)] if text else []
        if event_type in _RESPONSES_REASONING_EVENTS:
            text = _delta_text(payload.get("delta"))
            return [ReasoningDelta(text)] if text else []
        if event_type == "response.output_item.added":
            return self._item_added(payload.get("item"))
        if event_type == "response.function_call_arguments.delta":
            key, events = self._ensure_call(payload)
            fragment = payload.get("delta")
            if not isinstance(fragment, str):
                fragment = payload.get("arguments")
            if isinstance(fragment, str) and fragment:
                self._fragments[key] = self._fragments.get(key, 0) + len(fragment)
                events.append(ToolCallArgsDelta(key, fragment))
            return events
        if event_type == "response.function_call_arguments.done":
            key, events = self._ensure_call(payload)
            arguments = payload.get("arguments")
            if not self._fragments.get(key) and isinstance(arguments, str) and arguments:
                self._fragments[key] = len(arguments)
                events.append(ToolCallArgsDelta(key, arguments))
            return events
        if event_type in {"response.completed", "response.incomplete"}:
            response_block = payload.get("response")
            if isinstance(response_block, dict):
                status = response_block.get("status")
                self.finish_reason = str(status) if status else self.finish_reason or "completed"
                usage = _parse_usage(response_block.get("usage"))
                if usage:
                    self.usage = usage
            return []
        return []

    def _item_added(self, item: Any) -> list[StreamEvent]:
        if not isinstance(item, dict) or item.get("type") != "function_call":
            return []
        key = str(item.get("call_id") or item.get("id") or f"call_{len(self._item_keys)}")
        if item.get("id"):
            self._item_keys[str(item["id"])] = key
        events: list[StreamEvent] = [ToolCallStart(key, str(item.get("name") or ""))]
        arguments = item.get("arguments")
        if isinstance(arguments, str) and arguments:
            self._fragments[key] = len(arguments)
            events.append(ToolCallArgsDelta(key, arguments))
        return events

    def _ensure_call(self, payload: dict[str, Any]) -> tuple[str, list[StreamEvent]]:
        item_id = payload.get("item_id")
        key = self._item_keys.get(str(item_id)) if item_id else None
        if key is not None:
            return key, []
        key = str(payload.get("call_id") or item_id or "")
        if item_id:
            self._item_keys[str(item_id)] = key
        self._fragments.setdefault(key, 0)
        return key, [ToolCallStart(key, str(payload.get("name") or ""))]


# ----------------------------------------------------------------------
# Gemini
# ----------------------------------------------------------------------
def _gemini_payload(
    history: Sequence[Message],
    tool_schemas: Sequence[ToolSchema],
    options: StreamOptions,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"contents": encode_gemini_contents(history)}
    if tool_schemas:
        payload["tools"] = [
            {
                "functionDeclarations": [
                    {
                        "name": schema.name,
                        "description": schema.description,
                        "parametersJsonSchema": schema.input_schema,
                    }
                    for schema in tool_schemas
                ]
            }
        ]
    if options.system_prompt:
        payload["systemInstruction"] = {"parts": [{"text": options.system_prompt}]}
    generation: dict[str, Any] = {}
    if options.output_tokens is not None:
        generation["maxOutputTokens"] = options.output_tokens
    if options.temperature is not None:
        generation["temperature"] = options.temperature
    budget = options.thinking_budget
    if budget is None and options.thinking:
        budget = GEMINI_THINKING_BUDGETS.get(options.thinking.lower())
        if budget is None:
            try:
                budget = int(options.thinking)
            except ValueError:
                logger.warning("Unknown thinking level %r; using dynamic budget", options.thinking)
                budget = -1
    if budget is not None:
        thinking_config: dict[str, Any] = {"includeThoughts": budget != 0}
        if budget != -1:
            thinking_config["thinkingBudget"] = budget
        generation["thinkingConfig"] = thinking_config
    if generation:
        payload["generationConfig"] = generation
    return payload


def encode_gemini_contents(history: Sequence[Message]) -> list[dict[str, Any]]:
    contents: list[dict[str, Any]] = []
    for message in history:
        if message.role == "user":
            contents.append({"role": "user", "parts": [{"text": message.text()}]})
        elif message.role == "tool-result":
            responses = [
                {
                    "functionResponse": {
                        "name": part.name,
                        "response": {
                            "content": [{"type": "text", "text": part.result}],
                            "isError": part.is_error,
                        },
                    }
                }
                for part in message.parts
                if isinstance(part, ToolResultPart)
            ]
            previous = contents[-1] if contents else None
            if previous is not None and previous.get("_tool_results"):
                previous["parts"].extend(responses)
            elif responses:
                contents.append({"role": "user", "parts": responses, "_tool_results": True})
        else:
            parts = _gemini_model_parts(message)
            if parts:
                contents.append({"role": "model", "parts": parts})
    for entry in contents:
        entry.pop("_tool_results", None)
    return contents


def _gemini_model_parts(message: Message) -> list[dict[str, Any]]:
    parts: list[dict[str, Any]] = []
    carried_signature: str | None = None
    for part in message.parts:
        encoded: dict[str, Any] | None = None
        if isinstance(part, ThoughtPart):
            if part.signature is None:
                continue
            if not part.content:
                carried_signature = part.signature
                continue
            encoded = {"text": part.content, "thought": True, "thoughtSignature": part.signature}
        elif isinstance(part, TextPart):
            encoded = {"text": part.content}
        elif isinstance(part, ToolCallPart):
            encoded = {"functionCall": {"name": part.name, "args": part.args}}
        if encoded is None:
            continue
        if carried_signature is not None and "thoughtSignature" not in encoded:
            encoded["thoughtSignature"] = carried_signature
        carried_signature = None
        parts.append(encoded)
    return parts


class GeminiDecoder:
    """Decode ``streamGenerateContent`` SSE payloads."""

    def __init__(self) -> None:
        self.finish_reason: str | None = None
        self.usage: dict[str, int] | None = None
        self._call_count = 0

    def decode(self, payload: dict[str, Any]) -> list[StreamEvent]:
        error = payload.get("error")
        if error:
            raise BackendUnavailable(_error_message(error))
        usage = payload.get("usageMetadata")
        if isinstance(usage, dict):
            parsed = {
                "input_tokens": int(usage.get("promptTokenCount") or 0),
                "output_tokens": int(usage.get("candidatesTokenCount") or 0),
                "total_tokens": int(usage.get("totalTokenCount") or 0),
            }
            self.usage = parsed
        candidates = payload.get("candidates")
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            return []
        candidate = candidates[0]
        finish = candidate.get("finishReason")
        if isinstance(finish, str) and finish:
            self.finish_reason = finish
        content = candidate.get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        events: list[StreamEvent] = []
        for part in parts or []:
            if isinstance(part, dict):
                events.extend(self._part_events(part))
        return events

    def _part_events(self, part: dict[str, Any]) -> list[StreamEvent]:
        signature = part.get("thoughtSignature")
        signature = signature if isinstance(signature, str) else None
        text = part.get("text")
        call = part.get("functionCall")
        if isinstance(call, dict):
            self._call_count += 1
            key = str(call.get("id") or f"gemini_call_{self._call_count}")
            events: list[StreamEvent] = []
            if signature is not None:
                events.append(ReasoningDelta("", signature))
            events.append(ToolCallStart(key, str(call.get("name") or "")))
            events.append(ToolCallArgsDelta(key, json.dumps(call.get("args") or {})))
            return events
        if isinstance(text, str):
            if part.get("thought"):
                return [ReasoningDelta(text, signature)]
            events = [ReasoningDelta("", signature)] if signature is not None else []
            if text:
                events.append(TextDelta(text))
            return events
        return []


# ----------------------------------------------------------------------
# Shared helpers
# ----------------------------------------------------------------------
StreamDecoder = ChatCompletionsDecoder | ResponsesDecoder | GeminiDecoder


def make_decoder(api: ApiStyle) -> StreamDecoder:
    if api == "responses":
        return ResponsesDecoder()
    if api == "gemini":
        return GeminiDecoder()
    return ChatCompletionsDecoder()


def parse_sse_line(raw_line: str) -> dict[str, Any] | None:
    """Return the JSON payload carried by one SSE line, if any."""

    if not raw_line:
        return None
    if raw_line.startswith(":") or raw_line.startswith("event:") or raw_line.startswith("id:"):
        return None
    if raw_line.startswith("data:"):
        payload = raw_line.partition("data:")[2].strip()
    else:
        payload = raw_line.strip()
    if not payload or payload == "[DONE]":
        return None
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("Skipping non-JSON LLM payload: %s", payload)
        return None
    return parsed if isinstance(parsed, dict) else None


def _delta_text(delta: Any) -> str:
    if isinstance(delta, str):
        return delta
    if isinstance(delta, dict) and isinstance(delta.get("text"), str):
        return delta["text"]
    return ""


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or json.dumps(error))
    return str(error or "Unknown LLM error")


def _parse_usage(usage_payload: object) -> dict[str, int] | None:
    if not isinstance(usage_payload, dict):
        return None
    usage: dict[str, int] = {}
    for key, value in usage_payload.items():
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            usage[key] = value
        elif isinstance(value, float):
            usage[key] = int(value)
    return usage or None


__all__ = [
    "ChatCompletionsDecoder",
    "GeminiDecoder",
    "ResponsesDecoder",
    "StreamDecoder",
    "build_endpoint",
    "build_headers",
    "build_payload",
    "encode_chat_messages",
    "encode_gemini_contents",
    "encode_responses_input",
    "make_decoder",
    "parse_sse_line",
]
