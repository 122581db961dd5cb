import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
import requests

from app.config.settings import settings
from app.services.llm_engine import CLIENT, LLMClient, LLMGenerator, LLMServiceError


def _response(data):
    resp = Mock()
    resp.raise_for_status.return_value = None
    resp.json.return_value = data
    return resp


@pytest.fixture
def http_stub():
    return SimpleNamespace(post=Mock())


def test_ollama_payload_and_extraction(http_stub):
    http_stub.post.return_value = _response({"message": {"content": "  The door opens.  "}})
    client = LLMClient("http://localhost:11434/api/chat", session=http_stub)

    text = client.complete("llama3.1", "Narrate.", [{"role": "user", "content": "Open"}], 1.2, 300)

    assert text == "The door opens."
    payload = http_stub.post.call_args.kwargs["json"]
    assert payload["messages"][0] == {"role": "system", "content": "Narrate."}
    assert payload["options"] == {"temperature": 1.2, "num_predict": 300}
    assert payload["stream"] is False
    assert http_stub.post.call_args.kwargs["headers"] == {}


def test_openai_payload_and_extraction(http_stub):
    http_stub.post.return_value = _response({"choices": [{"message": {"content": "Outcome"}}]})
    client = LLMClient("https://api.example.com/v1/chat/completions", provider="openai", api_key="k", session=http_stub)

    text = client.complete("gpt-4o", None, [{"role": "user", "content": "Go"}], None, 300)

    assert text == "Outcome"
    payload = http_stub.post.call_args.kwargs["json"]
    assert payload == {
        "model": "gpt-4o",
        "messages": [{"role": "user", "content": "Go"}],
        "max_completion_tokens": 300,
    }
    assert http_stub.post.call_args.kwargs["headers"] == {"Authorization": "Bearer k"}


@pytest.mark.parametrize("data", [{}, {"message": {"content": "   "}}, {"choices": []}, ["not", "a", "dict"]])
def test_malformed_payload_raises(http_stub, data):
    http_stub.post.return_value = _response(data)
    client = LLMClient("http://localhost:11434/api/chat", session=http_stub)

    with pytest.raises(LLMServiceError):
        client.complete("m", None, [{"role": "user", "content": "x"}])


def test_http_timeout_is_wrapped(http_stub):
    http_stub.post.side_effect = requests.Timeout("slow")
    client = LLMClient("http://localhost:11434/api/chat", session=http_stub)

    with pytest.raises(LLMServiceError):
        client.complete("m", None, [{"role": "user", "content": "x"}])


def test_http_error_is_wrapped(http_stub):
    resp = Mock()
    resp.raise_for_status.side_effect = requests.HTTPError("429")
    http_stub.post.return_value = resp
    client = LLMClient("http://localhost:11434/api/chat", session=http_stub)

    with pytest.raises(LLMServiceError):
        client.complete("m", None, [{"role": "user", "content": "x"}])


def test_async_generator_runs_client_in_thread():
    client = SimpleNamespace(complete=Mock(return_value="Narration"))
    generator = LLMGenerator(client)

    try:
        text = asyncio.run(generator.generate("m", "sys", [{"role": "user", "content": "x"}], 0.5, 10))
    finally:
        generator.close()

    assert text == "Narration"
    client.complete.assert_called_once_with("m", "sys", [{"role": "user", "content": "x"}], 0.5, 10)


def test_default_session_never_replays_slow_reads():
    client = LLMClient("http://localhost:11434/api/chat")
    retry = client.session.get_adapter("http://localhost:11434/api/chat").max_retries

    assert retry.read == 0
    assert retry.total <= 2


def test_module_client_read_timeout_follows_settings():
    assert CLIENT.chat_timeout[1] == settings.LLM_TIMEOUT_SECONDS


def test_generator_uses_its_own_thread_pool():
    release = threading.Event()
    client = SimpleNamespace(complete=Mock(return_value="Narration"))
    generator = LLMGenerator(client, max_workers=1)

    async def scenario():
        loop = asyncio.get_running_loop()
        loop.set_default_executor(ThreadPoolExecutor(max_workers=1))
        hogged = loop.run_in_executor(None, release.wait, 5)
        try:
            return await asyncio.wait_for(generator.generate("m", None, [{"role": "user", "content": "x"}]), 1.0)
        finally:
            release.set()
            await hogged

    try:
        assert asyncio.run(scenario()) == "Narration"
    finally:
        generator.close()
