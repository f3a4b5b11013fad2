"""
Episode summarization using Anthropic Claude.

Produces the summary stored on each new episode row. The summary feeds
the weighted full-text search vector, so prompts ask for the episode's
key terms to be kept.
"""

from typing import Literal, Protocol

import structlog
from anthropic import AnthropicError, AsyncAnthropic

from transcript_rag.config import Settings, get_settings
from transcript_rag.exceptions import SummarizationError
from transcript_rag.utils.latency import latency_tracked

logger = structlog.get_logger(__name__)

SummaryMode = Literal["short", "long"]

SYSTEM_PROMPT = """You summarize transcripts of spoken content: podcasts, interviews, meetings and talks.

Write summaries that capture what the conversation is about, who takes part, the main points discussed and any conclusions reached. Keep names, products, projects, numbers and domain terms exactly as they appear in the transcript; these summaries are used for keyword search.

Only state what the transcript supports. Do not add a preamble or a title."""

MODE_INSTRUCTIONS: dict[str, str] = {
    "short": (
        "Write a short summary: at most 3 sentences and under 100 words, "
        "as a single paragraph with no line breaks or bullet points. "
        "Cover the topic and participants, the core discussion, and the main takeaway."
    ),
    "long": (
        "Write a comprehensive summary of 150 to 400 words depending on how much "
        "ground the transcript covers. Use the sections Overview, Key Discussion "
        "Points, Decisions & Outcomes and Important Keywords."
    ),
}


class Summarizer(Protocol):
    async def summarize(self, full_text: str, mode: SummaryMode = "short") -> str: ...


class SummarizerService:
    """Claude-backed :class:`Summarizer`."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: AsyncAnthropic | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(
                api_key=self.settings.anthropic_api_key.get_secret_value()
            )
        return self._client

    def _build_prompt(self, full_text: str, mode: str) -> str:
        limit = self.settings.summary_max_input_chars
        if len(full_text) > limit:
            full_text = full_text[:limit]

        return f"""{MODE_INSTRUCTIONS[mode]}

<transcript>
{full_text}
</transcript>"""

    @latency_tracked("summarization")
    async def summarize(self, full_text: str, mode: SummaryMode = "short") -> str:
        """
        Summarize a transcript's full text.

        Args:
            full_text: Concatenated utterance text
            mode: ``short`` (3 sentences) or ``long`` (150-400 words)

        Returns:
            Summary text

        Raises:
            SummarizationError: On API failure or an empty reply
        """
        if mode not in MODE_INSTRUCTIONS:
            raise SummarizationError(f"Unknown summary mode: {mode!r}")
        if not full_text.strip():
            raise SummarizationError("Nothing to summarize")

        try:
            response = await self._get_client().messages.create(
                model=self.settings.summary_model,
                max_tokens=self.settings.summary_max_tokens,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": self._build_prompt(full_text, mode)}],
            )
        except AnthropicError as exc:
            logger.error("summarization_failed", mode=mode, error=str(exc))
            raise SummarizationError(f"Summarization request failed: {exc}") from exc

        summary = "".join(
            block.text for block in response.content if block.type == "text"
        ).strip()
        if not summary:
            raise SummarizationError("Summarizer returned no text")

        logger.info(
            "summary_generated",
            mode=mode,
            input_chars=len(full_text),
            summary_chars=len(summary),
            output_tokens=response.usage.output_tokens,
        )
        return summary

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
