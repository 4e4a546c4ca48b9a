"""Memory extraction from finished conversation turns using an LLM."""

import logging
import re
from typing import TYPE_CHECKING, Any

from .llm import CompletionRouter, parse_model_ref
from .models import Memory, MemorySource
from .settings import SettingsAccessor
from .store import MemoryStore

if TYPE_CHECKING:
    from .embeddings import EmbeddingClient
    from .logging import JSONLLogger

logger = logging.getLogger(__name__)

NONE_SENTINELS = {"none", "无"}
MIN_FACT_LENGTH = 5
MAX_MESSAGE_CHARS = 500
EXTRACTION_MAX_TOKENS = 500

EXTRACTION_PROMPT = """Extract the information worth remembering from the conversation below: user preferences, facts about the user, decisions and key conclusions.

Rules:
- One fact per line, short and self-contained
- Write facts in third person ("The user works at Google")
- Only stable facts, not passing states ("is tired")
- If nothing is worth remembering, reply with exactly: NONE

Conversation:
{conversation}

Facts:"""

# Leading list markers such as "1. ", "2) ", "- ", "* ", "• "
_LIST_MARKER = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s*")


def parse_candidates(text: str) -> list[str]:
    """Split an extraction response into candidate facts.

    Lines are stripped of list markers. Empty lines, the NONE sentinel and
    anything shorter than five characters are dropped, as are duplicates.
    """
    candidates: list[str] = []
    seen: set[str] = set()
    for line in text.splitlines():
        content = _LIST_MARKER.sub("", line, count=1).strip()
        if not content or content.lower() in NONE_SENTINELS:
            continue
        if len(content) < MIN_FACT_LENGTH:
            continue
        key = content.lower()
        if key in seen:
            continue
        seen.add(key)
        candidates.append(content)
    return candidates


def format_conversation(turns: list[dict[str, Any]]) -> str:
    """Format user/assistant turns into a readable transcript."""
    lines = []
    for turn in turns:
        role = turn.get("role", "unknown")
        content = str(turn.get("content") or "")[:MAX_MESSAGE_CHARS]
        if role == "user":
            lines.append(f"User: {content}")
        elif role == "assistant":
            lines.append(f"Assistant: {content}")
        # Skip system and tool messages
    return "\n".join(lines)


class MemoryExtractor:
    """Proposes and stores new memories after a conversation turn."""

    def __init__(
        self,
        store: MemoryStore,
        router: CompletionRouter | None,
        settings: SettingsAccessor,
        embedder: "EmbeddingClient | None" = None,
        events: "JSONLLogger | None" = None,
    ) -> None:
        """Initialize the extractor.

        Args:
            store: Where new memories are added.
            router: Text-generation router; None disables extraction.
            settings: Accessor for the current MemorySettings.
            embedder: Optional client used to embed new memories.
            events: Optional JSONL event log.
        """
        self.store = store
        self.router = router
        self.settings = settings
        self.embedder = embedder
        self.events = events

    async def extract_and_store(self, turns: list[dict[str, Any]]) -> list[Memory]:
        """Extract facts from a conversation and save them as auto memories.

        Args:
            turns: Conversation messages as {role, content} dicts.

        Returns:
            Newly stored memories, empty if disabled, unconfigured or on error.
        """
        settings = self.settings()
        if not settings.enabled or not settings.auto_summarize:
            return []

        model_ref = parse_model_ref(settings.tool_model)
        if model_ref is None or self.router is None:
            logger.info("Memory extraction skipped: no tool model configured")
            return []

        if len(turns) < 2:
            return []

        prompt = EXTRACTION_PROMPT.format(conversation=format_conversation(turns))
        try:
            response = await self.router.complete(
                model_ref, prompt, max_tokens=EXTRACTION_MAX_TOKENS
            )
        except Exception as e:
            logger.warning(f"Memory extraction failed: {e}")
            if self.events:
                self.events.log_extraction(0, error=str(e))
            return []

        candidates = parse_candidates(response or "")
        saved = [self.store.add(content, MemorySource.AUTO) for content in candidates]

        if self.embedder is not None:
            await self._embed(saved)

        if self.events:
            self.events.log_extraction(len(saved))
        return saved

    async def _embed(self, memories: list[Memory]) -> None:
        """Attach vectors to new memories, one request at a time."""
        for memory in memories:
            vector = await self.embedder.embed(memory.content)
            if vector is None:
                continue
            self.store.attach_embedding(
                memory.id,
                vector,
                identity=self.embedder.identity,
                expected_content=memory.content,
            )
