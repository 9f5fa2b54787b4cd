"""Google Gemini generation provider using the google-genai SDK."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator

from google import genai
from google.genai import types
from pydantic import BaseModel

from dataroom_rag.exceptions import GenerationError
from dataroom_rag.observability.logger import get_logger
from dataroom_rag.protocols.llm import GenerationRequest

logger = get_logger("gemini")


class GeminiProvider:
    def __init__(self, api_key: str, model: str = "gemini-2.0-flash") -> None:
        self._client = genai.Client(api_key=api_key)
        self._model = model

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        """Yield text deltas; token usage is written into ``request.usage``.

        Closing this generator closes the upstream response stream.
        """
        config = types.GenerateContentConfig(
            temperature=request.temperature,
            max_output_tokens=request.max_tokens,
            system_instruction=request.system,
        )
        contents = [
            types.Content(
                role="user" if role == "user" else "model",
                parts=[types.Part.from_text(text=content)],
            )
            for role, content in request.messages
        ]
        try:
            response_stream = await self._client.aio.models.generate_content_stream(
                model=self._model,
                contents=contents,
                config=config,
            )
        except Exception as e:
            raise GenerationError(f"Gemini streaming failed: {e}") from e

        try:
            async for chunk in response_stream:
                usage = chunk.usage_metadata
                if usage is not None:
                    request.usage["input_tokens"] = usage.prompt_token_count or 0
                    request.usage["output_tokens"] = usage.candidates_token_count or 0
                if chunk.text:
                    yield chunk.text
        except Exception as e:
            raise GenerationError(f"Gemini streaming failed: {e}") from e
        finally:
            close = getattr(response_stream, "aclose", None)
            if close is not None:
                await close()
            logger.debug("gemini_stream_closed", model=self._model)

    async def generate_structured(
        self,
        prompt: str,
        response_schema: type[BaseModel],
        system: str | None = None,
    ) -> BaseModel:
        try:
            config = types.GenerateContentConfig(
                temperature=0.0,
                response_mime_type="application/json",
                response_schema=response_schema,
            )
            if system:
                config.system_instruction = system

            response = await self._client.aio.models.generate_content(
                model=self._model,
                contents=prompt,
                config=config,
            )
            data = json.loads(response.text)
            return response_schema.model_validate(data)
        except Exception as e:
            raise GenerationError(f"Gemini structured generation failed: {e}") from e
