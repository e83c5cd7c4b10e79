from __future__ import annotations

import asyncio
import types

import pytest
from openai import AsyncAzureOpenAI, OpenAIError

from fundgraph.core.config import Settings
from fundgraph.services.azure import openai_client as oc


class _DummyCred:
    def __init__(self, *args, **kwargs):
        self.args = args
        self.kwargs = kwargs

    def get_token(self, *scopes, **kwargs):
        return types.SimpleNamespace(token="dummy-token", expires_on=0)


class _FailingCompletions:
    async def create(self, **kwargs):
        raise OpenAIError("quota exceeded")


class _EmptyCompletions:
    async def create(self, **kwargs):
        return types.SimpleNamespace(choices=[])


def _cfg(**overrides) -> Settings:
    values = {"AZURE_OPENAI_ENDPOINT": "https://example.openai.azure.com/", "AZURE_OPENAI_API_KEY": None}
    values.update(overrides)
    return Settings(**values)


def test_openai_client_instantiates_without_key(monkeypatch):
    # No key configured: the Managed Identity token provider is used.
    monkeypatch.setattr(oc, "DefaultAzureCredential", _DummyCred)

    client = oc.get_openai_client(_cfg())

    assert isinstance(client, AsyncAzureOpenAI)


def test_openai_client_requires_endpoint():
    with pytest.raises(ValueError):
        oc.get_openai_client(_cfg(AZURE_OPENAI_ENDPOINT=None))


def test_sdk_errors_become_chat_client_errors():
    chat = oc.AzureChatClient(_cfg(AZURE_OPENAI_API_KEY="test-key"))
    chat._client = types.SimpleNamespace(chat=types.SimpleNamespace(completions=_FailingCompletions()))

    with pytest.raises(oc.ChatClientError, match="quota exceeded"):
        asyncio.run(chat.generate_answer(system_prompt="s", user_prompt="u"))


def test_empty_completion_is_an_error():
    chat = oc.AzureChatClient(_cfg(AZURE_OPENAI_API_KEY="test-key"))
    chat._client = types.SimpleNamespace(chat=types.SimpleNamespace(completions=_EmptyCompletions()))

    with pytest.raises(oc.ChatClientError, match="empty completion"):
        asyncio.run(chat.generate_answer(system_prompt="s", user_prompt="u"))
