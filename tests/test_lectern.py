"""Tests for lectern/lectern.py (end-to-end over mocked providers)"""

import asyncio
import json

import pytest

from conftest import EMBEDDINGS, RecordingSink, fail_with, ndjson, respond, sse
from lectern.config import Settings
from lectern.errors import ConfigurationError
from lectern.events import ChunkEvent, DoneEvent, ErrorEvent, SourcesEvent
from lectern.lectern import Lectern
from lectern.models import ChatMessage
from lectern.streaming import StreamState


OLLAMA = "http://ollama.test"

ANSWER = ndjson(
    {"message": {"content": "Use the "}, "done": False},
    {"message": {"content": "previous tag."}, "done": False},
    {"message": {"content": ""}, "done": True},
)


@pytest.fixture
def settings() -> Settings:
    # Only Ollama configured, so it is auto-selected
    return Settings(ollama_base_url=OLLAMA)


def lectern_for(router, settings, store, sink) -> Lectern:
    return Lectern(lambda: settings, lambda: store, sink, http_client=router.client())


class TestAskQuestion:
    """The full question-answering pipeline."""

    async def test_sources_chunks_done(self, router, settings, store, sink):
        router.add("POST", "/api/embeddings", respond(json={"embedding": [0.6, 0.8, 0.0]}))
        router.add("POST", "/api/chat", respond(content=ANSWER))
        lectern = lectern_for(router, settings, store, sink)

        await lectern.ask_question("r1", "How do I rollback?")

        assert sink.names() == [
            "ai-response-sources",
            "ai-response-chunk",
            "ai-response-chunk",
            "ai-response-done",
        ]
        assert sink.text() == "Use the previous tag."
        assert all(e.request_id == "r1" for e in sink.events)
        sources = sink.events[0].sources
        assert sources[0].chunk_id == 2
        assert sources[0].doc_slug == "deploy-guide"
        assert sink.events[-1].cancelled is False
        assert len(lectern.registry) == 0

    async def test_prompt_contains_retrieved_context(self, router, settings, store, sink):
        router.add("POST", "/api/embeddings", respond(json={"embedding": [0.6, 0.8, 0.0]}))
        router.add("POST", "/api/chat", respond(content=ANSWER))
        await lectern_for(router, settings, store, sink).ask_question("r1", "How do I rollback?")

        body = json.loads(router.calls("/api/chat")[0].content)
        user = body["messages"][1]["content"]
        assert "--- Context 1 --- (Rollback)\nRollback uses the previous release tag." in user
        assert user.endswith("Question: How do I rollback?")

    async def test_embedding_failure_falls_back_to_keywords(self, router, settings, store, sink):
        router.add("POST", "/api/embeddings", respond(500, content=b"model not loaded"))
        router.add("POST", "/api/chat", respond(content=ANSWER))

        await lectern_for(router, settings, store, sink).ask_question("r1", "rollback")

        assert sink.names()[0] == "ai-response-sources"
        assert [s.chunk_id for s in sink.events[0].sources] == [2]
        assert sink.names()[-1] == "ai-response-done"
        assert not any(isinstance(e, ErrorEvent) for e in sink.events)

    async def test_openai_non_json_embedding_falls_back(self, router, store, sink):
        openai_only = Settings(openai_api_key="sk-test", ollama_base_url=None)
        router.add("POST", "/v1/embeddings", respond(content=b"<html>gateway</html>"))
        router.add("POST", "/v1/chat/completions", respond(content=sse(
            {"choices": [{"delta": {"content": "Use the previous tag."}}]},
            "[DONE]",
        )))

        await lectern_for(router, openai_only, store, sink).ask_question("r1", "rollback")

        assert [s.chunk_id for s in sink.events[0].sources] == [2]
        assert sink.text() == "Use the previous tag."
        assert sink.names()[-1] == "ai-response-done"
        assert not any(isinstance(e, ErrorEvent) for e in sink.events)

    async def test_embedding_network_error_falls_back(self, router, settings, store, sink):
        router.add("POST", "/api/embeddings", fail_with())
        router.add("POST", "/api/chat", respond(content=ANSWER))
        await lectern_for(router, settings, store, sink).ask_question("r1", "pager rotation")
        assert [s.chunk_id for s in sink.events[0].sources] == [3]

    async def test_cancel_mid_stream(self, router, settings, store):
        router.add("POST", "/api/embeddings", respond(json={"embedding": [1.0, 0.0, 0.0]}))
        router.add("POST", "/api/chat", respond(content=ANSWER))

        lectern = None

        def cancel_on_first_chunk(event):
            if isinstance(event, ChunkEvent):
                lectern.cancel_request("r1")

        sink = RecordingSink(cancel_on_first_chunk)
        lectern = lectern_for(router, settings, store, sink)
        await lectern.ask_question("r1", "deploy")

        chunks = [e for e in sink.events if isinstance(e, ChunkEvent)]
        assert [c.content for c in chunks] == ["Use the "]
        assert sink.events[-1] == DoneEvent(request_id="r1", cancelled=True)
        assert len(lectern.registry) == 0

    async def test_stale_cancellation_cleared(self, router, settings, store, sink):
        router.add("POST", "/api/embeddings", respond(json={"embedding": [1.0, 0.0, 0.0]}))
        router.add("POST", "/api/chat", respond(content=ANSWER))
        lectern = lectern_for(router, settings, store, sink)

        lectern.cancel_request("r1")
        await lectern.ask_question("r1", "deploy")
        assert sink.events[-1].cancelled is False
        assert sink.text() == "Use the previous tag."

    async def test_no_provider_configured(self, router, store, sink):
        lectern = lectern_for(router, Settings(ollama_base_url=None), store, sink)
        await lectern.ask_question("r1", "anything")

        assert len(sink.events) == 1
        assert isinstance(sink.events[0], ErrorEvent)
        assert "No AI provider configured" in sink.events[0].message
        assert router.requests == []

    async def test_chat_error_after_sources(self, router, settings, store, sink):
        router.add("POST", "/api/embeddings", respond(json={"embedding": [1.0, 0.0, 0.0]}))
        router.add("POST", "/api/chat", respond(500, content=b"boom"))
        await lectern_for(router, settings, store, sink).ask_question("r1", "deploy")

        assert sink.names() == ["ai-response-sources", "ai-response-error"]
        assert sink.events[-1].message == "Ollama API error (500): boom"

    async def test_missing_document_is_error(self, router, settings, make_store, sink):
        store = make_store(
            name="orphans.db",
            chunks=[(1, 99, 0, "Orphaned rollback notes.", None)],
            embeddings=None,
        )
        router.add("POST", "/api/embeddings", respond(json={"embedding": [1.0]}))
        router.add("POST", "/api/chat", respond(content=ANSWER))
        await lectern_for(router, settings, store, sink).ask_question("r1", "rollback")

        assert len(sink.events) == 1
        assert isinstance(sink.events[0], ErrorEvent)
        assert router.calls("/api/chat") == []

    async def test_unexpected_error_becomes_event(self, router, settings, sink):
        def broken_store():
            raise RuntimeError("store went away")

        lectern = Lectern(lambda: settings, broken_store, sink, http_client=router.client())
        router.add("POST", "/api/embeddings", respond(json={"embedding": [1.0, 0.0, 0.0]}))
        await lectern.ask_question("r1", "deploy")

        assert sink.events == [ErrorEvent(request_id="r1", message="store went away")]

    async def test_empty_retrieval_still_answers(self, router, settings, make_store, sink):
        store = make_store(name="empty.db", chunks=[], documents=[])
        router.add("POST", "/api/embeddings", respond(json={"embedding": [1.0, 0.0, 0.0]}))
        router.add("POST", "/api/chat", respond(content=ANSWER))
        await lectern_for(router, settings, store, sink).ask_question("r1", "deploy")

        assert sink.events[0] == SourcesEvent(request_id="r1", sources=[])
        body = json.loads(router.calls("/api/chat")[0].content)
        assert "No relevant context was found" in body["messages"][1]["content"]

    async def test_concurrent_questions_are_independent(self, router, settings, store):
        router.add("POST", "/api/embeddings", respond(json={"embedding": [1.0, 0.0, 0.0]}))
        router.add("POST", "/api/chat", respond(content=ANSWER))
        sink = RecordingSink()
        lectern = lectern_for(router, settings, store, sink)

        await asyncio.gather(
            lectern.ask_question("a", "deploy"),
            lectern.ask_question("b", "rollback"),
        )
        for request_id in ("a", "b"):
            mine = [e for e in sink.events if e.request_id == request_id]
            assert mine[0].name == "ai-response-sources"
            assert mine[-1] == DoneEvent(request_id=request_id, cancelled=False)


class TestAnswer:
    async def test_raises_instead_of_emitting(self, router, store, sink):
        lectern = lectern_for(router, Settings(ollama_base_url=None), store, sink)
        with pytest.raises(ConfigurationError):
            await lectern.answer("r1", "anything")
        assert sink.events == []


class TestSurface:
    """Search, embedding and connection operations exposed to the host."""

    def test_hybrid_search(self, router, settings, store, sink):
        results = lectern_for(router, settings, store, sink).hybrid_search([1.0, 0.0, 0.0], "rollback")
        assert [c.id for c in results] == [1, 2]

    def test_vector_and_keyword_search(self, router, settings, store, sink):
        lectern = lectern_for(router, settings, store, sink)
        assert [c.id for c in lectern.vector_search(EMBEDDINGS[3], limit=1)] == [3]
        assert [c.id for c in lectern.keyword_search("pager")] == [3]

    async def test_generate_embedding_defaults_to_ollama(self, router, settings, store, sink):
        router.add("POST", "/api/embeddings", respond(json={"embedding": [0.1, 0.2]}))
        lectern = lectern_for(router, settings, store, sink)
        assert await lectern.generate_embedding("hello") == [0.1, 0.2]

    async def test_test_provider_connection(self, router, settings, store, sink):
        router.add("GET", "/", respond(content=b"Ollama is running"))
        lectern = lectern_for(router, settings, store, sink)
        assert await lectern.test_provider_connection("ollama") == "Ollama connection successful"

    async def test_stream_chat_clears_flag(self, router, settings, store, sink):
        router.add("POST", "/api/chat", respond(content=ANSWER))
        lectern = lectern_for(router, settings, store, sink)
        state = await lectern.stream_chat("ollama", [ChatMessage("user", "hi")], "r9")
        assert state is StreamState.COMPLETED
        assert len(lectern.registry) == 0

    async def test_async_context_manager_leaves_injected_client_open(self, router, settings, store, sink):
        http = router.client()
        async with Lectern(lambda: settings, lambda: store, sink, http_client=http):
            pass
        assert not http.is_closed
