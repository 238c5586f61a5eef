#!/usr/bin/env python3
"""
Example 2: Multi-Provider Answers with Lectern

This example demonstrates:
- Checking which providers are configured and reachable
- Asking the same question through each provider
- Embedding fallback when Anthropic is the chat provider

Requirements:
    pip install lectern

    # Any of:
    export OPENAI_API_KEY=sk-...
    export ANTHROPIC_API_KEY=sk-ant-...
    export GEMINI_API_KEY=...
    ollama serve && ollama pull llama3 && ollama pull nomic-embed-text
"""

import asyncio
import sys

from lectern import (
    AiProvider,
    CallbackEventSink,
    ChunkEvent,
    ErrorEvent,
    LecternError,
    Settings,
    create_lectern,
)


DB_PATH = sys.argv[1] if len(sys.argv) > 1 else "handbook.db"
QUESTION = "What is our incident severity scale?"


async def main():
    settings = Settings.from_env()
    answers = {}

    def collect(event):
        if isinstance(event, ChunkEvent):
            answers[event.request_id] = answers.get(event.request_id, "") + event.content
        elif isinstance(event, ErrorEvent):
            answers[event.request_id] = f"❌ {event.message}"

    async with create_lectern(DB_PATH, CallbackEventSink(collect), settings=settings) as lectern:
        print("\n" + "=" * 60)
        print("🔌 Connection checks")
        print("=" * 60)
        reachable = []
        for provider in AiProvider:
            try:
                print(f"   ✅ {await lectern.test_provider_connection(provider)}")
                reachable.append(provider)
            except LecternError as e:
                print(f"   ⚠️  {provider.display_name}: {e}")

        # Each question runs independently; ask them all at once
        await asyncio.gather(*[
            lectern.ask_question(provider.value, QUESTION, provider) for provider in reachable
        ])

        for provider in reachable:
            print("\n" + "=" * 60)
            print(f"💬 {provider.display_name}")
            print("=" * 60)
            print(answers.get(provider.value, "(no answer)"))


if __name__ == "__main__":
    asyncio.run(main())
