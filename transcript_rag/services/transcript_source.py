"""
Transcript source adapters.

Turns a URL into a normalized :class:`Transcript`. Two kinds of source
are supported:

- JSON transcript documents served over HTTP, with either a structured
  utterance list or a single text blob
- YouTube videos, whose captions become utterances and whose oEmbed
  metadata supplies the title and channel

Network and HTTP failures raise :class:`FetchError`; documents that do not
match the expected shape raise :class:`ParseError`. Nothing is retried.
"""

import asyncio
import re
from typing import Any, Protocol
from urllib.parse import parse_qs, urlparse

import httpx
import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from youtube_transcript_api import CouldNotRetrieveTranscript, YouTubeTranscriptApi

from transcript_rag.config import Settings, get_settings
from transcript_rag.exceptions import FetchError, ParseError
from transcript_rag.models.domain import Transcript, TranscriptMetadata, Utterance
from transcript_rag.utils.latency import latency_tracked
from transcript_rag.utils.timestamps import format_timestamp

logger = structlog.get_logger(__name__)

OEMBED_URL = "https://www.youtube.com/oembed"
WATCH_URL = "https://www.youtube.com/watch?v={video_id}"

_VIDEO_ID = re.compile(r"^[A-Za-z0-9_-]{11}$")
_YOUTUBE_HOSTS = {"youtube.com", "www.youtube.com", "m.youtube.com", "music.youtube.com"}


class UtteranceDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    timestamp: str = ""
    speaker: str = ""
    text: str = ""

    @field_validator("timestamp", "speaker", "text", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class TextBlobDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str


class MetadataDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    episode_title: str = Field(..., min_length=1)
    speakers: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("speakers", "total_speakers"),
    )
    source: str = Field(..., min_length=1)
    summary: str | None = None


class TranscriptDocument(BaseModel):
    """Wire shape of an inbound transcript document."""

    model_config = ConfigDict(extra="ignore")

    metadata: MetadataDocument
    transcript: list[UtteranceDocument] | TextBlobDocument


def parse_transcript_document(payload: Any, url: str) -> Transcript:
    """
    Validate a decoded JSON document and normalize it.

    Raises:
        ParseError: If the document does not match the expected shape
    """
    try:
        document = TranscriptDocument.model_validate(payload)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'document'}: {err['msg']}"
            for err in exc.errors()[:5]
        )
        raise ParseError(url, f"invalid transcript document ({problems})") from exc

    meta = document.metadata
    metadata = TranscriptMetadata(
        episode_title=meta.episode_title,
        speakers=meta.speakers,
        source=meta.source,
        summary=meta.summary,
    )

    if isinstance(document.transcript, TextBlobDocument):
        return Transcript(
            metadata=metadata,
            utterances=[Utterance(text=document.transcript.text)],
            variant="simple",
        )

    return Transcript(
        metadata=metadata,
        utterances=[
            Utterance(timestamp=u.timestamp, speaker=u.speaker, text=u.text)
            for u in document.transcript
        ],
        variant="structured",
    )


def youtube_video_id(url: str) -> str | None:
    """Extract the video id from a YouTube URL or a ``youtube:<id>`` reference."""
    if url.startswith("youtube:"):
        video_id = url.removeprefix("youtube:").strip()
        return video_id if _VIDEO_ID.match(video_id) else None

    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()

    candidate: str | None = None
    if host == "youtu.be":
        candidate = parsed.path.lstrip("/").split("/")[0]
    elif host in _YOUTUBE_HOSTS:
        if parsed.path == "/watch":
            candidate = parse_qs(parsed.query).get("v", [""])[0]
        else:
            parts = parsed.path.strip("/").split("/")
            if len(parts) >= 2 and parts[0] in {"shorts", "embed", "live", "v"}:
                candidate = parts[1]

    if candidate and _VIDEO_ID.match(candidate):
        return candidate
    return None


class TranscriptFetcher(Protocol):
    async def fetch(self, url: str) -> Transcript: ...


def _build_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=settings.fetch_timeout_seconds,
        follow_redirects=True,
        headers={"Accept": "application/json"},
    )


class JsonTranscriptSource:
    """Fetches transcript documents over HTTP."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client or _build_client(self.settings)

    @latency_tracked("transcript_fetch")
    async def fetch(self, url: str) -> Transcript:
        try:
            response = await self._client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise FetchError(url, f"request failed: {exc}") from exc

        if response.status_code >= 400:
            raise FetchError(url, f"HTTP {response.status_code}", status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise ParseError(url, f"response is not valid JSON: {exc}") from exc

        transcript = parse_transcript_document(payload, url)
        logger.debug(
            "transcript_document_parsed",
            url=url,
            episode_title=transcript.episode_title,
            variant=transcript.variant,
            utterances=len(transcript.utterances),
        )
        return transcript

    async def close(self) -> None:
        await self._client.aclose()


class YouTubeTranscriptSource:
    """
    Builds transcripts from YouTube captions.

    Caption segments become utterances stamped with their start offset and
    no speaker. The oEmbed title is the episode title and the channel name
    is the one-entry speaker roster.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        caption_api: YouTubeTranscriptApi | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client or _build_client(self.settings)
        self._captions = caption_api or YouTubeTranscriptApi()

    def _fetch_captions(self, video_id: str) -> list[Utterance]:
        fetched = self._captions.fetch(video_id, languages=self.settings.caption_languages_list)
        utterances = []
        for snippet in fetched:
            text = " ".join(snippet.text.split())
            if text:
                utterances.append(Utterance(timestamp=format_timestamp(snippet.start), text=text))
        return utterances

    async def _fetch_oembed(self, url: str, watch_url: str) -> dict[str, Any]:
        try:
            response = await self._client.get(
                OEMBED_URL, params={"url": watch_url, "format": "json"}
            )
        except httpx.HTTPError as exc:
            raise FetchError(url, f"oEmbed request failed: {exc}") from exc

        if response.status_code >= 400:
            raise FetchError(
                url, f"oEmbed returned HTTP {response.status_code}", status_code=response.status_code
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ParseError(url, f"oEmbed response is not valid JSON: {exc}") from exc

        if not isinstance(payload, dict):
            raise ParseError(url, "oEmbed response is not an object")
        return payload

    @latency_tracked("transcript_fetch_youtube")
    async def fetch(self, url: str) -> Transcript:
        video_id = youtube_video_id(url)
        if video_id is None:
            raise FetchError(url, "not a YouTube video reference")

        watch_url = WATCH_URL.format(video_id=video_id)
        info = await self._fetch_oembed(url, watch_url)

        try:
            utterances = await asyncio.to_thread(self._fetch_captions, video_id)
        except (CouldNotRetrieveTranscript, OSError) as exc:
            raise FetchError(url, f"captions unavailable: {exc}") from exc

        title = str(info.get("title") or "").strip()
        if not title:
            raise ParseError(url, "oEmbed response has no title")
        author = str(info.get("author_name") or "").strip()

        logger.debug(
            "youtube_captions_fetched",
            url=url,
            video_id=video_id,
            segments=len(utterances),
        )
        return Transcript(
            metadata=TranscriptMetadata(
                episode_title=title,
                speakers=[author] if author else [],
                source=watch_url,
            ),
            utterances=utterances,
            variant="structured",
        )

    async def close(self) -> None:
        await self._client.aclose()


class TranscriptSource:
    """Routes YouTube references to captions and everything else to JSON."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        caption_api: YouTubeTranscriptApi | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client or _build_client(self.settings)
        self.json = JsonTranscriptSource(self.settings, client=self._client)
        self.youtube = YouTubeTranscriptSource(
            self.settings, client=self._client, caption_api=caption_api
        )

    async def fetch(self, url: str) -> Transcript:
        if youtube_video_id(url) is not None:
            return await self.youtube.fetch(url)
        return await self.json.fetch(url)

    async def close(self) -> None:
        await self._client.aclose()
