"""Schema-constrained generation backends.

A StructuredGenerator returns an instance of the requested schema or raises;
it never hands back partially validated data.
"""

from __future__ import annotations

import json
import logging
from typing import Protocol, TypeVar

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from priceintel.analysis.prompts import Prompt
from priceintel.config import LLMConfig
from priceintel.errors import GenerationError, SchemaValidationError

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class StructuredGenerator(Protocol):
    """Capability interface for schema-constrained generation."""

    async def generate(self, prompt: Prompt, schema: type[SchemaT]) -> SchemaT:
        """Return data validating against ``schema``.

        Raises:
            SchemaValidationError: If the output does not validate
            GenerationError: If the backend call itself fails
        """
        ...


def schema_instructions(schema: type[BaseModel]) -> str:
    """JSON schema appended to the system prompt."""
    return (
        "Antworte ausschließlich mit einem JSON-Objekt, das diesem JSON-Schema entspricht:\n"
        + json.dumps(schema.model_json_schema(by_alias=True), ensure_ascii=False)
    )


def parse_structured(raw: str, schema: type[SchemaT]) -> SchemaT:
    """Validate raw JSON text against a schema.

    Raises:
        SchemaValidationError: If the text is not valid JSON for the schema
    """
    try:
        return schema.model_validate_json(raw)
    except PydanticValidationError as exc:
        raise SchemaValidationError(
            f"Output does not match schema {schema.__name__}: {exc.error_count()} error(s)",
            schema_name=schema.__name__,
            raw_output=raw,
        ) from exc


class OpenAIStructuredGenerator:
    """OpenAI chat completions in JSON mode, validated with pydantic."""

    def __init__(self, config: LLMConfig, client: AsyncOpenAI | None = None):
        self.config = config
        if client is None:
            if not config.api_key:
                raise ValueError("OPENAI_API_KEY is required for the OpenAI generator")
            client = AsyncOpenAI(
                api_key=config.api_key,
                base_url=config.base_url,
                timeout=config.timeout_seconds,
            )
        self.client = client

    async def generate(self, prompt: Prompt, schema: type[SchemaT]) -> SchemaT:
        logger.debug(f"Requesting {schema.__name__} from {self.config.model}")

        try:
            response = await self.client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": f"{prompt.system}\n\n{schema_instructions(schema)}"},
                    {"role": "user", "content": prompt.user},
                ],
                response_format={"type": "json_object"},
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except openai.OpenAIError as exc:
            raise GenerationError(f"Generation request failed: {exc}") from exc

        if not response.choices:
            raise GenerationError("Empty response from LLM")

        choice = response.choices[0]
        if choice.finish_reason == "length":
            # Truncated JSON never validates; report it as such
            raise SchemaValidationError(
                f"Output for {schema.__name__} was truncated at {self.config.max_tokens} tokens",
                schema_name=schema.__name__,
                raw_output=choice.message.content,
            )

        content = choice.message.content
        if not content:
            raise GenerationError("Empty response from LLM")

        return parse_structured(content, schema)
