"""Conversation assembler: one grounded chat turn.

Pipeline:
  1. Validate the message (non-empty, at most chat.max_message_chars).
  2. Resolve or create the conversation; append the user turn.
  3. Load the channel's history window (turns before the new one, oldest first).
  4. Retrieve the channel's top-N chunks; retrieval failure means no context.
  5. Compose the prompt: system/mode instructions, knowledge base, history,
     then the new message.
  6. Generate. On failure the user turn is flagged and GenerationError is
     raised; no assistant turn is written.
  7. Append the assistant turn with one citation per chunk used.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from loguru import logger

from lorebase.config import CHANNELS, ChannelCfg, LorebaseConfig, ModeCfg
from lorebase.db.models import Citation, Conversation, Role, Turn
from lorebase.db.repository import ConversationNotFoundError, Repository
from lorebase.rag import llm_client
from lorebase.rag.llm_client import GenerationConfig, GenerationError
from lorebase.rag.retriever import retrieve
from lorebase.rag.scorer import ScoredChunk

_LAST_MESSAGE_CHARS = 100

_KNOWLEDGE_HEADER = (
    "# LOADED KNOWLEDGE BASE\n\n"
    "The following excerpts from the indexed documentation are relevant to the "
    "user's question. Use this knowledge to provide accurate, grounded responses. "
    "Cite sources naturally when appropriate."
)

_HISTORY_HEADER = (
    "# CONVERSATION HISTORY\n\n"
    "The following is the recent conversation history. Use this context to provide "
    "coherent, contextually relevant responses that build on previous exchanges."
)

GenerateFn = Callable[[str, GenerationConfig], str]


class InvalidMessageError(ValueError):
    """Raised when a chat message is empty, too long, or sent on an unknown channel."""


@dataclass
class ChatResponse:
    conversation_id: str
    message_id: str
    text: str
    citations: list[Citation] = field(default_factory=list)

    def to_record(self) -> dict:
        """Return the response shape consumed by UI layers."""
        return {
            "messageId": self.message_id,
            "responseText": self.text,
            "citations": [c.to_record() for c in self.citations],
        }


def citation_url(repo_name: str, file_path: str, branch: str = "main") -> str:
    return f"https://github.com/{repo_name}/blob/{branch}/{file_path}"


class ConversationAssembler:
    """Answer user messages from retrieved chunks and conversation history.

    Args:
        repo: Store holding sources, chunks, conversations and turns.
        config: Loaded configuration (chat, channels, modes, generation, retrieval).
        generate: Generation capability; defaults to the LiteLLM client.
    """

    def __init__(
        self,
        repo: Repository,
        config: LorebaseConfig | None = None,
        generate: GenerateFn = llm_client.generate,
    ) -> None:
        self._repo = repo
        self._cfg = config or LorebaseConfig()
        self._generate = generate

    def respond(
        self,
        conversation_id: str | None,
        user_text: str,
        *,
        owner: str,
        mode: str | None = None,
        channel: str = "text",
    ) -> ChatResponse:
        """Run one chat turn and return the assistant reply.

        Raises:
            InvalidMessageError: Before any write, if the message is invalid.
            ConversationNotFoundError: If the conversation belongs to another owner.
            GenerationError: If generation fails (the user turn stays persisted).
        """
        text = self._validate(user_text, channel)
        channel_cfg = self._cfg.channels.get(channel)

        conversation = self._resolve_conversation(conversation_id, owner, mode)
        mode_id = mode or conversation.mode_id
        user_turn = self._repo.add_turn(
            Turn(conversation_id=conversation.id, role=Role.USER, text=text, channel=channel)
        )

        history = self._repo.recent_turns(
            conversation.id, channel_cfg.history_window, before_seq=user_turn.seq
        )
        context = retrieve(text, self._repo, channel_cfg.max_chunks, self._cfg.retrieval)
        logger.debug(
            "Conversation {}: {} history turns, {} context chunks",
            conversation.id,
            len(history),
            len(context),
        )

        prompt = self.build_prompt(text, history, context, channel_cfg, self._resolve_mode(mode_id))
        gen_config = GenerationConfig(
            model=self._cfg.generation.model,
            temperature=self._cfg.generation.temperature,
            max_tokens=(
                channel_cfg.max_tokens
                if channel_cfg.max_tokens is not None
                else self._cfg.generation.max_tokens
            ),
            num_retries=self._cfg.generation.num_retries,
        )

        try:
            reply = self._generate(prompt, gen_config)
        except Exception as exc:
            self._repo.mark_turn_error(user_turn.id)
            logger.error("No reply for conversation {}: {}", conversation.id, exc)
            if isinstance(exc, GenerationError):
                raise
            raise GenerationError(str(exc)) from exc

        citations = self._citations(context)
        assistant_turn = self._repo.add_turn(
            Turn(
                conversation_id=conversation.id,
                role=Role.ASSISTANT,
                text=reply,
                citations=citations,
                channel=channel,
            )
        )
        conversation = self._repo.require_conversation(conversation.id)
        conversation.last_message = reply[:_LAST_MESSAGE_CHARS]
        self._repo.update_conversation(conversation)

        return ChatResponse(
            conversation_id=conversation.id,
            message_id=assistant_turn.id,
            text=reply,
            citations=citations,
        )

    # ------------------------------------------------------------------
    # Prompt
    # ------------------------------------------------------------------

    def build_prompt(
        self,
        text: str,
        history: list[Turn],
        context: list[ScoredChunk],
        channel_cfg: ChannelCfg,
        mode: ModeCfg | None = None,
    ) -> str:
        """Compose the single prompt sent to the generation capability."""
        assistant = self._cfg.chat.assistant_name
        parts = [mode.system_prompt if mode and mode.system_prompt else self._cfg.chat.system_prompt]

        if mode is not None:
            parts.append(
                f"FOCUS: {mode.title}\n"
                f"DESCRIPTION: {mode.description}\n\n"
                "You are guiding the user through this specific focus. "
                "Tailor your responses accordingly."
            )
        if channel_cfg.instructions:
            parts.append(channel_cfg.instructions)

        if context:
            sources = "\n".join(
                f"\n---\nSOURCE {i}: {sc.chunk.repo_name}/{sc.chunk.file_path}\n---\n{sc.chunk.text}\n"
                for i, sc in enumerate(context, start=1)
            )
            parts.append(f"{_KNOWLEDGE_HEADER}\n\n{sources}\n\n---")

        if history:
            lines = "\n\n".join(
                f"{'User' if turn.role is Role.USER else assistant}: {turn.text}"
                for turn in history
            )
            parts.append(f"{_HISTORY_HEADER}\n\n{lines}\n\n---")

        parts.append(f"User: {text}\n\n{assistant}:")
        return "\n\n".join(parts)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate(self, user_text: str, channel: str) -> str:
        if channel not in CHANNELS:
            raise InvalidMessageError(
                f"Unknown channel '{channel}'. Use one of: {', '.join(CHANNELS)}"
            )
        text = (user_text or "").strip()
        if not text:
            raise InvalidMessageError("Message must not be empty")
        limit = self._cfg.chat.max_message_chars
        if len(text) > limit:
            raise InvalidMessageError(
                f"Message is too long ({len(text)} characters, maximum {limit})"
            )
        return text

    def _resolve_conversation(
        self, conversation_id: str | None, owner: str, mode: str | None
    ) -> Conversation:
        if conversation_id:
            existing = self._repo.get_conversation(conversation_id)
            if existing is not None:
                if existing.owner != owner:
                    raise ConversationNotFoundError(f"Conversation '{conversation_id}' not found")
                if mode and mode != existing.mode_id:
                    existing.mode_id = mode
                    existing = self._repo.update_conversation(existing)
                return existing
        return self._repo.create_conversation(
            Conversation(
                id=conversation_id or str(uuid.uuid4()),
                owner=owner,
                title=self._cfg.chat.default_title,
                mode_id=mode,
            )
        )

    def _resolve_mode(self, mode_id: str | None) -> ModeCfg | None:
        if not mode_id:
            return None
        mode = self._cfg.modes.get(mode_id)
        if mode is None:
            logger.warning("Unknown mode '{}', using the default prompt", mode_id)
            return None
        if not mode.active:
            logger.warning("Mode '{}' is inactive, using the default prompt", mode_id)
            return None
        return mode

    def _citations(self, context: list[ScoredChunk]) -> list[Citation]:
        branches: dict[str, str] = {}
        citations: list[Citation] = []
        for sc in context:
            chunk = sc.chunk
            if chunk.source_id not in branches:
                source = self._repo.get_source(chunk.source_id)
                branches[chunk.source_id] = source.branch if source else "main"
            citations.append(
                Citation(
                    repo_name=chunk.repo_name,
                    file_path=chunk.file_path,
                    url=citation_url(chunk.repo_name, chunk.file_path, branches[chunk.source_id]),
                )
            )
        return citations
