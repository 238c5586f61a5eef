"""Tests for lectern/prompt.py"""

from lectern.models import ScoredChunk
from lectern.prompt import NO_CONTEXT, SYSTEM_PROMPT, build_rag_prompt


def chunk(id: int, text: str, heading: str = "") -> ScoredChunk:
    return ScoredChunk(
        id=id, document_id=1, chunk_index=id, content_text=text, heading_context=heading, score=1.0
    )


def test_system_and_user_messages():
    messages = build_rag_prompt([chunk(1, "Use the release pipeline.", "Deploying")], "How to deploy?")
    assert [m.role for m in messages] == ["system", "user"]
    assert messages[0].content == SYSTEM_PROMPT
    assert messages[1].content == (
        "Here is relevant context from the engineering handbook:\n\n"
        "--- Context 1 --- (Deploying)\nUse the release pipeline.\n\n"
        "---\n\n"
        "Question: How to deploy?"
    )


def test_context_blocks_keep_rank_order():
    messages = build_rag_prompt([chunk(7, "second best?"), chunk(3, "best")], "q")
    user = messages[1].content
    assert user.index("--- Context 1 ---\nsecond best?") < user.index("--- Context 2 ---\nbest")


def test_no_context_placeholder():
    messages = build_rag_prompt([], "Anything?")
    assert NO_CONTEXT in messages[1].content
    assert messages[1].content.endswith("Question: Anything?")
