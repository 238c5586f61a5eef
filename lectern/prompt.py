"""Prompt construction for retrieval-augmented answers."""

from typing import List, Sequence

from .models import ChatMessage, ScoredChunk


SYSTEM_PROMPT = (
    "You are a helpful assistant for an engineering handbook. "
    "Answer questions based on the provided context from the handbook. "
    "If the context does not contain enough information to answer, say so honestly. "
    "Use clear, concise language. Format your response with markdown where appropriate."
)

NO_CONTEXT = "No relevant context was found in the handbook."

USER_TEMPLATE = """Here is relevant context from the engineering handbook:

{context}

---

Question: {question}"""


def format_context(chunks: Sequence[ScoredChunk]) -> str:
    """Render chunks as numbered context blocks, in the order given."""
    blocks = []
    for i, chunk in enumerate(chunks, 1):
        heading = f" ({chunk.heading_context})" if chunk.heading_context else ""
        blocks.append(f"--- Context {i} ---{heading}\n{chunk.content_text}")
    return "\n\n".join(blocks) if blocks else NO_CONTEXT


def build_rag_prompt(chunks: Sequence[ScoredChunk], question: str) -> List[ChatMessage]:
    """
    Build the system/user message pair for a question.

    Chunks should already be ranked. With no chunks the question is still
    asked, with an explicit "no relevant context" placeholder.
    """
    return [
        ChatMessage(role="system", content=SYSTEM_PROMPT),
        ChatMessage(
            role="user",
            content=USER_TEMPLATE.format(context=format_context(chunks), question=question),
        ),
    ]
