from __future__ import annotations

import logging
from typing import Literal, TypedDict, TypeVar

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from disclosure_workers.core.errors import ExtractionParseError, ExtractionUnavailableError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class ChatMessage(TypedDict):
    role: Literal["system", "user", "assistant"]
    content: str


def retry_context_message(stacktrace: list[str]) -> ChatMessage | None:
    """Earlier failures of the same job, replayed so the model can avoid them."""
    failures = [entry for entry in stacktrace if entry.strip()]
    if not failures:
        return None
    return {
        "role": "user",
        "content": "Previous attempts failed with the following errors. Please correct them:\n"
        + "\n".join(failures),
    }


def with_retry_context(messages: list[ChatMessage], stacktrace: list[str]) -> list[ChatMessage]:
    context = retry_context_message(stacktrace)
    conversation = [message for message in messages if message["content"]]
    if context is not None:
        conversation.append(context)
    return conversation


def parse_structured(schema: type[ModelT], raw: str) -> ModelT:
    try:
        return schema.model_validate_json(raw)
    except ValidationError as exc:
        snippet = raw if len(raw) <= 500 else raw[:500] + "..."
        raise ExtractionParseError(f"response did not match schema {schema.__name__}: {exc}\nresponse: {snippet}") from exc


class ExtractionClient:
    def __init__(self, *, api_key: str | None, model: str, timeout: float = 120.0, client: AsyncOpenAI | None = None) -> None:
        self.model = model
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout)

    async def ask(self, messages: list[ChatMessage], *, schema: type[BaseModel], schema_name: str) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0.1,
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": schema_name, "schema": schema.model_json_schema()},
                },
            )
        except openai.OpenAIError as exc:
            raise ExtractionUnavailableError(f"extraction service failed: {exc}") from exc

        content = response.choices[0].message.content if response.choices else None
        logger.debug("extraction response schema=%s chars=%s", schema_name, len(content or ""))
        return content or ""

    async def aclose(self) -> None:
        await self._client.close()
