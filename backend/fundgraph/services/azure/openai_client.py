from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from azure.core.exceptions import AzureError
from azure.identity import DefaultAzureCredential, get_bearer_token_provider
from openai import AsyncAzureOpenAI, OpenAIError

from fundgraph.core.config import Settings, settings
from fundgraph.shared.exceptions import AppError


class ChatClientError(AppError):
    """The language model could not produce an answer."""


@dataclass(frozen=True)
class ChatResult:
    output_text: str
    model: str
    raw: Any


def _token_provider() -> Callable[[], str]:
    """
    Azure OpenAI uses an AAD bearer token unless an API key is configured.
    We provide it via azure-identity's get_bearer_token_provider.
    """
    cred = DefaultAzureCredential(exclude_interactive_browser_credential=True)
    return get_bearer_token_provider(cred, "https://cognitiveservices.azure.com/.default")


def get_openai_client(cfg: Settings | None = None) -> AsyncAzureOpenAI:
    cfg = cfg or settings
    if not cfg.AZURE_OPENAI_ENDPOINT:
        raise ValueError("AZURE_OPENAI_ENDPOINT not configured")
    if cfg.AZURE_OPENAI_API_KEY:
        return AsyncAzureOpenAI(
            azure_endpoint=cfg.AZURE_OPENAI_ENDPOINT,
            api_version=cfg.AZURE_OPENAI_API_VERSION,
            api_key=cfg.AZURE_OPENAI_API_KEY,
        )
    return AsyncAzureOpenAI(
        azure_endpoint=cfg.AZURE_OPENAI_ENDPOINT,
        api_version=cfg.AZURE_OPENAI_API_VERSION,
        azure_ad_token_provider=_token_provider(),
    )


class AzureChatClient:
    def __init__(self, cfg: Settings | None = None) -> None:
        cfg = cfg or settings
        if not cfg.AZURE_OPENAI_MODEL:
            raise ValueError("AZURE_OPENAI_MODEL not configured")
        self._model = cfg.AZURE_OPENAI_MODEL
        self._client = get_openai_client(cfg)

    async def generate_answer(self, *, system_prompt: str, user_prompt: str) -> ChatResult:
        try:
            resp = await self._client.chat.completions.create(
                model=self._model,
                temperature=0,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            )
        except (OpenAIError, AzureError) as exc:
            raise ChatClientError(f"{type(exc).__name__}: {exc}") from exc
        text = resp.choices[0].message.content if resp.choices else None
        if not text:
            raise ChatClientError("empty completion")
        return ChatResult(output_text=text, model=self._model, raw=resp)

    async def close(self) -> None:
        await self._client.close()


def strip_code_fences(text: str) -> str:
    """Model output sometimes arrives wrapped in ```cypher fences."""
    t = (text or "").strip()
    if t.startswith("```"):
        t = t.strip("`").strip()
        for tag in ("cypher", "sql"):
            if t.lower().startswith(tag):
                t = t[len(tag):].strip()
                break
    return t
