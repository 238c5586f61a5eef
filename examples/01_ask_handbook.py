#!/usr/bin/env python3
"""
Example 1: Asking the Handbook with Lectern

This example demonstrates:
- Opening a project database produced by the ingestion pipeline
- Keyword and hybrid search
- Streaming an answer with source citations
- Cancelling an answer part-way through

Requirements:
    pip install lectern
    export OPENAI_API_KEY=sk-...   # or ANTHROPIC_API_KEY / GEMINI_API_KEY, or run Ollama
"""

import asyncio
import sys
import uuid

from lectern import (
    CallbackEventSink,
    ChunkEvent,
    DoneEvent,
    ErrorEvent,
    Settings,
    SourcesEvent,
    create_lectern,
)


DB_PATH = sys.argv[1] if len(sys.argv) > 1 else "handbook.db"


def print_event(event):
    if isinstance(event, SourcesEvent):
        print(f"\n📚 {len(event.sources)} sources:")
        for i, source in enumerate(event.sources, 1):
            print(f"   {i}. {source.doc_title} > {source.heading_context or '-'}")
        print("\n💬 Answer:\n")
    elif isinstance(event, ChunkEvent):
        print(event.content, end="", flush=True)
    elif isinstance(event, DoneEvent):
        print("\n\n⏹  cancelled" if event.cancelled else "\n\n✅ done")
    elif isinstance(event, ErrorEvent):
        print(f"\n❌ {event.message}")


async def main():
    print("=" * 60)
    print("Example 1: Asking the Handbook")
    print("=" * 60)

    settings = Settings.from_env()
    print(f"\n🔌 Usable providers: {[p.display_name for p in settings.usable_providers()]}")

    async with create_lectern(DB_PATH, CallbackEventSink(print_event), settings=settings) as lectern:
        # ============================================================
        # Step 1: Keyword search (no API calls)
        # ============================================================
        print("\n🔍 Keyword search: 'deployment checklist'")
        for i, chunk in enumerate(lectern.keyword_search("deployment checklist", limit=3), 1):
            print(f"   {i}. [{chunk.score:.2f}] {chunk.content_text[:80]}...")

        # ============================================================
        # Step 2: Hybrid search with a query embedding
        # ============================================================
        query = "how do we roll back a release"
        print(f"\n🔍 Hybrid search: '{query}'")
        embedding = await lectern.generate_embedding(query)
        for i, chunk in enumerate(lectern.hybrid_search(embedding, query, limit=3), 1):
            print(f"   {i}. [{chunk.score:.2f}] {chunk.content_text[:80]}...")

        # ============================================================
        # Step 3: Ask a question
        # ============================================================
        await lectern.ask_question(uuid.uuid4().hex, "What should I check before deploying?")

        # ============================================================
        # Step 4: Cancel an answer after a second
        # ============================================================
        request_id = uuid.uuid4().hex
        task = asyncio.create_task(
            lectern.ask_question(request_id, "Summarise the on-call process in detail.")
        )
        await asyncio.sleep(1.0)
        lectern.cancel_request(request_id)
        await task


if __name__ == "__main__":
    asyncio.run(main())
