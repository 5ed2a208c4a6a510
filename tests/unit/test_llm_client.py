"""Tests for the Ollama HTTP client against a mocked transport."""
import json

import httpx
import pytest

from localdocs.llm_client import OllamaClient


def _client(handler):
    return OllamaClient(base_url="http://ollama.test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_embeddings_request():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"embedding": [0.1, 0.2, 0.3]})

    data = await _client(handler).embeddings("hello", model="embed-model")

    assert data == {"embedding": [0.1, 0.2, 0.3]}
    assert seen == {"path": "/api/embeddings", "body": {"model": "embed-model", "prompt": "hello"}}


@pytest.mark.asyncio
async def test_embeddings_http_error_propagates():
    client = _client(lambda request: httpx.Response(500, json={"error": "boom"}))

    with pytest.raises(httpx.HTTPStatusError):
        await client.embeddings("hello", model="embed-model")


@pytest.mark.asyncio
async def test_generate_stream_parses_ndjson():
    lines = [
        {"response": "Hel", "done": False},
        {"response": "lo", "done": False},
        {"response": "", "done": True, "eval_count": 2},
    ]
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        body = "\n".join(json.dumps(line) for line in lines) + "\n\n"
        return httpx.Response(200, content=body.encode("utf-8"))

    records = [
        r async for r in _client(handler).generate_stream(
            "prompt", model="chat-model", options={"num_predict": 8}
        )
    ]

    assert records == lines
    assert seen["body"] == {
        "model": "chat-model",
        "prompt": "prompt",
        "stream": True,
        "options": {"num_predict": 8},
    }


@pytest.mark.asyncio
async def test_generate_stream_status_error():
    client = _client(lambda request: httpx.Response(404, json={"error": "model not found"}))

    with pytest.raises(httpx.HTTPStatusError):
        async for _ in client.generate_stream("prompt", model="missing"):
            pass


@pytest.mark.asyncio
async def test_list_models():
    def handler(request):
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [{"name": "a:latest"}, {"name": "b:7b"}]})

    assert await _client(handler).list_models() == ["a:latest", "b:7b"]
