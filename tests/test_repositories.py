"""
Tests for the SQL repositories against a temporary SQLite file
"""

import json

import pytest

from core.domain import DocumentChunk, Role
from infrastructure.repositories import (
    SQLKnowledgeRepository, SQLMessageRepository, make_chunk_source,
)


async def _seed(session_factory, doc_id="doc-1", filename="alkenes.pdf", n_chunks=3):
    async with session_factory() as session:
        repo = SQLKnowledgeRepository(session)
        await repo.insert_document(doc_id, filename, "full text")
        for i in range(n_chunks):
            await repo.insert_chunk(DocumentChunk(
                id=f"{doc_id}-c{i}", doc_id=doc_id, content=f"chunk {i}", embedding=[float(i), 1.0],
            ))
        await repo.commit()


class TestSQLKnowledgeRepository:
    """Tests for SQLKnowledgeRepository"""

    @pytest.mark.asyncio
    async def test_list_all_chunks_in_storage_order(self, session_factory):
        await _seed(session_factory)

        rows = await make_chunk_source(session_factory)()

        assert [r.id for r in rows] == ["doc-1-c0", "doc-1-c1", "doc-1-c2"]
        assert rows[0].filename == "alkenes.pdf"
        assert json.loads(rows[1].embedding) == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_uncommitted_inserts_are_not_visible(self, session_factory):
        async with session_factory() as session:
            repo = SQLKnowledgeRepository(session)
            await repo.insert_document("doc-x", "x.txt", "text")
            await repo.insert_chunk(DocumentChunk(id="c", doc_id="doc-x", content="c", embedding=[1.0]))
            await repo.rollback()

        assert await make_chunk_source(session_factory)() == []

    @pytest.mark.asyncio
    async def test_stats_and_lookup(self, session_factory):
        await _seed(session_factory, "doc-1", "a.pdf", 2)
        await _seed(session_factory, "doc-2", "b.txt", 0)

        async with session_factory() as session:
            repo = SQLKnowledgeRepository(session)
            stats = {s.id: s for s in await repo.list_documents_with_stats()}
            document = await repo.get_document("doc-1")
            count = await repo.count_chunks("doc-1")
            chunks = await repo.get_chunks_by_document("doc-1")

        assert stats["doc-1"].chunk_count == 2
        assert stats["doc-2"].chunk_count == 0
        assert stats["doc-1"].text_length == len("full text")
        assert document.filename == "a.pdf"
        assert document.full_text == "full text"
        assert count == 2
        assert [c.content for c in chunks] == ["chunk 0", "chunk 1"]
        assert chunks[0].embedding == []

    @pytest.mark.asyncio
    async def test_missing_document(self, session_factory):
        async with session_factory() as session:
            assert await SQLKnowledgeRepository(session).get_document("nope") is None

    @pytest.mark.asyncio
    async def test_delete_chunk(self, session_factory):
        await _seed(session_factory)

        async with session_factory() as session:
            repo = SQLKnowledgeRepository(session)
            assert await repo.delete_chunk("doc-1-c1") is True
            assert await repo.delete_chunk("doc-1-c1") is False
            assert await repo.count_chunks("doc-1") == 2

    @pytest.mark.asyncio
    async def test_delete_document_cascades(self, session_factory):
        await _seed(session_factory, "doc-1")
        await _seed(session_factory, "doc-2")

        async with session_factory() as session:
            assert await SQLKnowledgeRepository(session).delete_document_cascade("doc-1") is True

        rows = await make_chunk_source(session_factory)()
        assert {r.doc_id for r in rows} == {"doc-2"}


class TestSQLMessageRepository:
    """Tests for SQLMessageRepository"""

    @pytest.mark.asyncio
    async def test_recent_window_in_chronological_order(self, session_factory):
        async with session_factory() as session:
            repo = SQLMessageRepository(session)
            for i in range(12):
                role = Role.USER if i % 2 == 0 else Role.ASSISTANT
                await repo.insert_turn("s1", role.value, f"turn {i}")
            await repo.insert_turn("other", Role.USER.value, "elsewhere")

            turns = await repo.get_recent_turns("s1", limit=10)

        assert [t.content for t in turns] == [f"turn {i}" for i in range(2, 12)]
        assert turns[0].role == Role.USER

    @pytest.mark.asyncio
    async def test_clear_only_touches_one_session(self, session_factory):
        async with session_factory() as session:
            repo = SQLMessageRepository(session)
            await repo.insert_turn("s1", "user", "a")
            await repo.insert_turn("s1", "assistant", "b")
            await repo.insert_turn("s2", "user", "c")

            removed = await repo.clear("s1")

            assert removed == 2
            assert await repo.get_recent_turns("s1") == []
            assert len(await repo.get_recent_turns("s2")) == 1
