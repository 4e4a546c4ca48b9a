"""Memory retrieval: semantic search with keyword and recency fallbacks."""

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from . import similarity
from .llm import CompletionRouter, parse_model_ref
from .models import BackfillReport, Memory, RetrievedMemory
from .settings import MemorySettings, SettingsAccessor
from .store import MemoryStore

if TYPE_CHECKING:
    from .embeddings import EmbeddingClient
    from .logging import JSONLLogger

logger = logging.getLogger(__name__)

RECENCY_FALLBACK_LIMIT = 3
RECENCY_FALLBACK_SIMILARITY = 0.5
EXACT_MATCH_BONUS = 2
REWRITE_MAX_TOKENS = 100

REWRITE_PROMPT = """Extract the core concepts and keywords from the user message below for a semantic search. Reply with the optimized search terms only, no explanation.

User message: {message}

Search terms:"""


@dataclass
class ContextResult:
    """A system prompt enriched with retrieved memories."""

    system_prompt: str
    original_query: str
    retrieved: list[RetrievedMemory] = field(default_factory=list)
    rewritten_query: str | None = None


def _query_words(query: str) -> list[str]:
    return [w for w in query.lower().split() if len(w) > 1]


def keyword_search(
    query: str,
    memories: list[Memory],
    limit: int,
) -> list[RetrievedMemory]:
    """Score memories by query-word occurrences.

    Each query word (whitespace-tokenized, single characters ignored) found
    in a memory's content scores 1; the whole query appearing verbatim adds
    2. Only memories scoring above zero are returned.

    Args:
        query: Raw search text.
        memories: Candidates.
        limit: Maximum number of results.

    Returns:
        Results by descending score; similarity is the score normalized
        by the best possible score.
    """
    words = _query_words(query)
    if not words:
        return []

    needle = query.strip().lower()
    scored: list[tuple[Memory, int]] = []
    for memory in memories:
        content = memory.content.lower()
        score = sum(1 for word in words if word in content)
        if needle and needle in content:
            score += EXACT_MATCH_BONUS
        if score > 0:
            scored.append((memory, score))

    scored.sort(key=lambda item: item[1], reverse=True)
    max_score = len(words) + EXACT_MATCH_BONUS
    return [
        RetrievedMemory(
            id=memory.id,
            content=memory.content,
            similarity=score / max_score,
            source=memory.source,
        )
        for memory, score in scored[:limit]
    ]


def recency_fallback(memories: list[Memory], limit: int) -> list[RetrievedMemory]:
    """Newest memories with a neutral similarity of 0.5."""
    newest = sorted(memories, key=lambda m: m.created_at, reverse=True)
    return [
        RetrievedMemory(
            id=m.id,
            content=m.content,
            similarity=RECENCY_FALLBACK_SIMILARITY,
            source=m.source,
        )
        for m in newest[:limit]
    ]


def format_memory_block(memories: list[RetrievedMemory]) -> str:
    """Format retrieved memories for injection into a system prompt.

    Returns:
        Markdown memory section, or empty string if no memories.
    """
    if not memories:
        return ""

    lines = "\n".join(f"[Memory {i}] {m.content}" for i, m in enumerate(memories, 1))
    return f"""
## Relevant memories about the user

The following is important information about the user. Take it into account when answering:

{lines}

---
"""


class RetrievalEngine:
    """Finds the memories relevant to a user message.

    Search tiers, in order: semantic ranking over embeddings, keyword
    matching when no embeddings are usable, and the newest memories when
    nothing matched at all. Provider failures never escape; they only push
    retrieval down to the next tier.
    """

    def __init__(
        self,
        store: MemoryStore,
        settings: SettingsAccessor,
        embedder: "EmbeddingClient | None" = None,
        router: CompletionRouter | None = None,
        events: "JSONLLogger | None" = None,
        lazy_embed: bool = True,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Memory collection.
            settings: Accessor for the current MemorySettings.
            embedder: Embedding client; None means keyword search only.
            router: Text-generation router used for query rewriting.
            events: Optional JSONL event log.
            lazy_embed: Embed memories lacking a vector before ranking.
        """
        self.store = store
        self.settings = settings
        self.embedder = embedder
        self.router = router
        self.events = events
        self.lazy_embed = lazy_embed

    async def retrieve(self, query: str) -> list[RetrievedMemory]:
        """Return the memories relevant to a query and record their access."""
        results, _ = await self._retrieve(query, self.settings())
        return results

    async def build_context(self, message: str, system_prompt: str = "") -> ContextResult:
        """Prepend relevant memories to a system prompt.

        Args:
            message: The user's message.
            system_prompt: The existing system prompt.

        Returns:
            ContextResult with the enriched prompt and what was retrieved.
        """
        results, rewritten = await self._retrieve(message, self.settings())
        block = format_memory_block(results)
        return ContextResult(
            system_prompt=block + system_prompt if block else system_prompt,
            original_query=message,
            retrieved=results,
            rewritten_query=rewritten,
        )

    async def backfill(self, stop_on_failure: bool = False) -> BackfillReport:
        """Embed memories that lack a vector from the current provider.

        Requests go out strictly one at a time.

        Args:
            stop_on_failure: Stop at the first failed request instead of
                trying every memory.
        """
        report = BackfillReport(total=self.store.count())
        if self.embedder is None:
            return report
        identity = self.embedder.identity
        if identity is None:
            return report

        pending = self.store.missing_embeddings(identity)
        if pending:
            logger.info("Generating embeddings for %d memories", len(pending))

        for memory in pending:
            vector = await self.embedder.embed(memory.content)
            if vector is None:
                report.failed += 1
                if stop_on_failure:
                    break
                continue
            if self.store.attach_embedding(
                memory.id, vector, identity=identity, expected_content=memory.content
            ):
                report.updated += 1

        if pending and self.events:
            self.events.log_backfill(report.updated, report.failed)
        return report

    async def rewrite_query(self, query: str) -> str:
        """Rewrite a query into denser search terms with the tool model.

        Falls back to the original query on any failure, on an empty
        answer, or on an answer more than twice as long as the query.
        """
        model_ref = parse_model_ref(self.settings().tool_model)
        if model_ref is None or self.router is None:
            return query

        try:
            rewritten = await self.router.complete(
                model_ref,
                REWRITE_PROMPT.format(message=query),
                max_tokens=REWRITE_MAX_TOKENS,
            )
        except Exception as e:
            logger.warning(f"Query rewriting failed: {e}")
            return query

        rewritten = (rewritten or "").strip()
        if not rewritten or len(rewritten) > len(query) * 2:
            return query
        return rewritten

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _retrieve(
        self, query: str, settings: MemorySettings
    ) -> tuple[list[RetrievedMemory], str | None]:
        if not settings.enabled or not settings.auto_retrieve:
            return [], None

        start_time = time.time()
        rewritten: str | None = None
        search_query = query
        if settings.query_rewriting:
            candidate = await self.rewrite_query(query)
            if candidate != query:
                rewritten = search_query = candidate

        results, mode = await self._search(search_query, settings)

        if results:
            self.store.record_access([r.id for r in results], rate=settings.decay_rate)

        if self.events:
            self.events.log_retrieval(
                query,
                mode,
                [r.id for r in results],
                rewritten_query=rewritten,
                duration_ms=(time.time() - start_time) * 1000,
            )
        return results, rewritten

    async def _search(
        self, query: str, settings: MemorySettings
    ) -> tuple[list[RetrievedMemory], str]:
        limit = settings.max_retrieve_count

        if self.embedder is not None and self.lazy_embed:
            await self.backfill(stop_on_failure=True)

        memories = self.store.list()
        if not memories:
            return [], "empty"

        results = await self._semantic_search(query, memories, settings)
        mode = "semantic"
        if results is None:
            results = keyword_search(query, memories, limit)
            mode = "keyword"

        if not results:
            results = recency_fallback(memories, min(limit, RECENCY_FALLBACK_LIMIT))
            mode = "recency"
        return results, mode

    async def _semantic_search(
        self,
        query: str,
        memories: list[Memory],
        settings: MemorySettings,
    ) -> list[RetrievedMemory] | None:
        """Rank by cosine similarity. None means semantic search is unavailable."""
        if self.embedder is None:
            return None

        identity = self.embedder.identity
        embedded = [m for m in memories if m.has_embedding(identity)]
        if not embedded or identity is None:
            return None

        query_vector = await self.embedder.embed(query)
        if query_vector is None:
            logger.info("Query embedding failed, falling back to keyword search")
            return None

        by_id = {m.id: m for m in embedded}
        hits = similarity.rank(query_vector, ((m.id, m.embedding) for m in embedded))
        threshold = settings.similarity_threshold / 100
        results: list[RetrievedMemory] = []
        for hit in hits:
            if hit.similarity < threshold:
                break
            memory = by_id[hit.id]
            results.append(
                RetrievedMemory(
                    id=memory.id,
                    content=memory.content,
                    similarity=hit.similarity,
                    source=memory.source,
                )
            )
            if len(results) >= settings.max_retrieve_count:
                break
        return results
