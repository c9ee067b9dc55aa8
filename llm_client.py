# llm_client.py
from typing import Any, Iterable, Optional

import google.genai as genai
from google.genai import types as genai_types

DEFAULT_MODEL = "gemini-2.5-flash"
LIGHT_MODEL = "gemini-2.5-flash-lite"
TEMPERATURE = 0.1


class ReasoningUnavailable(RuntimeError):
    pass


class ReasoningClient:
    """
    Async wrapper around the Gemini API.
    `generate` returns the response text ("" when the model says nothing) and
    raises on transport or API errors so callers can retry.
    """

    def __init__(self, api_key: str, model: Optional[str] = None, light_model: Optional[str] = None):
        if not api_key:
            raise ReasoningUnavailable("GEMINI_API_KEY is not configured")
        self.model = model or DEFAULT_MODEL
        self.light_model = light_model or LIGHT_MODEL
        self._client = genai.Client(api_key=api_key)

    async def generate(
        self,
        prompt: str,
        context: Iterable[Any] = (),
        extra: Iterable[Any] = (),
        light: bool = False,
    ) -> str:
        contents = [*context, *extra, prompt]
        resp = await self._client.aio.models.generate_content(
            model=self.light_model if light else self.model,
            contents=contents,
            config=genai_types.GenerateContentConfig(temperature=TEMPERATURE),
        )
        return resp.text or ""

    async def upload(self, path: str, mime_type: str) -> genai_types.Part:
        uploaded = await self._client.aio.files.upload(
            file=str(path),
            config=genai_types.UploadFileConfig(mime_type=mime_type),
        )
        return genai_types.Part.from_uri(
            file_uri=uploaded.uri,
            mime_type=uploaded.mime_type or mime_type,
        )
