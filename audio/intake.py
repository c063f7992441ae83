"""Upload intake: validates selected files and turns them into pending snippets."""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from audio.decoder import AudioDecoder, FfmpegAudioDecoder
from audio.models import IncomingFile, SnippetFile
from audio.snippets import SnippetConfig, SnippetSelector
from config.settings import Settings
from core.exceptions import DecodeError, ValidationError

logger = logging.getLogger(__name__)


class RejectionReason(str, Enum):
    NOT_AUDIO = "not_audio"
    TOO_LARGE = "too_large"
    DECODE_FAILED = "decode_failed"
    NO_SEGMENTS = "no_segments"


@dataclass(frozen=True)
class FileRejection:
    """A file that was not accepted, with a user-facing message."""

    file_name: str
    reason: RejectionReason
    message: str


@dataclass
class IntakeResult:
    """Outcome of one add_files call."""

    accepted: list[SnippetFile] = field(default_factory=list)
    rejections: list[FileRejection] = field(default_factory=list)
    duplicates: int = 0

    @property
    def has_rejections(self) -> bool:
        return bool(self.rejections)

    def rejection_messages(self) -> list[str]:
        return [r.message for r in self.rejections]


class UploadIntakeController:
    """Turns user-selected files into a de-duplicated set of pending snippets.

    Files are decoded and split concurrently; accepted snippets are appended
    in input order once every file has resolved. Problems with one file are
    reported as a rejection and never abort the rest of the batch. The owner
    must call close() (or use ``async with``) to release the decoder.
    """

    def __init__(
        self,
        decoder: AudioDecoder,
        selector: SnippetSelector | None = None,
        max_file_bytes: int = 50 * 1024 * 1024,
        segments_per_file: int = 3,
    ):
        self.decoder = decoder
        self.selector = selector or SnippetSelector(decoder)
        self.max_file_bytes = max_file_bytes
        self.segments_per_file = segments_per_file
        self._pending: dict[tuple[str, int], SnippetFile] = {}

    @classmethod
    def from_settings(
        cls, settings: Settings, decoder: AudioDecoder | None = None
    ) -> "UploadIntakeController":
        decoder = decoder or FfmpegAudioDecoder.from_settings(settings)
        selector = SnippetSelector(decoder, SnippetConfig.from_settings(settings))
        return cls(
            decoder,
            selector=selector,
            max_file_bytes=settings.max_upload_bytes,
            segments_per_file=settings.max_snippets_per_file,
        )

    @property
    def pending(self) -> list[SnippetFile]:
        """Snippets waiting for submission, in the order they were accepted."""
        return list(self._pending.values())

    def __len__(self) -> int:
        return len(self._pending)

    def _validate(self, file: IncomingFile) -> None:
        if not file.is_audio:
            raise ValidationError(
                f"{file.name} is not an audio file ({file.mime_type or 'unknown type'})",
                details={"reason": RejectionReason.NOT_AUDIO},
            )
        if file.size > self.max_file_bytes:
            limit_mb = self.max_file_bytes / (1024 * 1024)
            raise ValidationError(
                f"{file.name} exceeds the {limit_mb:.0f}MB limit",
                details={"reason": RejectionReason.TOO_LARGE},
            )

    async def _process(self, file: IncomingFile) -> list[SnippetFile] | FileRejection:
        try:
            self._validate(file)
        except ValidationError as e:
            logger.info(f"Rejected {file.name}: {e.message}")
            return FileRejection(file.name, e.details["reason"], e.message)

        try:
            buffer = await self.decoder.decode(file.data)
        except DecodeError as e:
            logger.warning(f"Failed to decode {file.name}: {e.message}")
            return FileRejection(
                file.name,
                RejectionReason.DECODE_FAILED,
                f"Could not process {file.name}: {e.message}",
            )
        except (OSError, ValueError) as e:
            # Decoder process could not start, or reported an unusable stream
            logger.warning(f"Failed to decode {file.name}: {e}")
            return FileRejection(
                file.name,
                RejectionReason.DECODE_FAILED,
                f"Could not process {file.name}: {e}",
            )

        snippets = await self.selector.select(buffer, file.name, self.segments_per_file)
        if not snippets:
            return FileRejection(
                file.name,
                RejectionReason.NO_SEGMENTS,
                f"Could not generate any snippets from {file.name}",
            )
        return snippets

    async def add_files(self, files: list[IncomingFile]) -> IntakeResult:
        """Validate, decode and split ``files`` into the pending set.

        Args:
            files: Files in the order the user selected them

        Returns:
            IntakeResult listing newly accepted snippets and per-file rejections
        """
        result = IntakeResult()
        if not files:
            return result

        outcomes = await asyncio.gather(*(self._process(f) for f in files))

        for outcome in outcomes:
            if isinstance(outcome, FileRejection):
                result.rejections.append(outcome)
                continue
            for snippet in outcome:
                if snippet.key in self._pending:
                    result.duplicates += 1
                    continue
                self._pending[snippet.key] = snippet
                result.accepted.append(snippet)

        logger.info(
            f"Intake: {len(files)} file(s) -> {len(result.accepted)} snippet(s), "
            f"{len(result.rejections)} rejected, {result.duplicates} already pending"
        )
        return result

    def remove(self, snippet: SnippetFile) -> bool:
        """Drop one snippet from the pending set; returns whether it was present."""
        return self._pending.pop(snippet.key, None) is not None

    def clear(self) -> None:
        self._pending.clear()

    def take_pending(self) -> list[SnippetFile]:
        """Return and clear the pending snippets."""
        snippets = self.pending
        self._pending.clear()
        return snippets

    async def close(self) -> None:
        """Release the decoding context."""
        await self.decoder.close()

    async def __aenter__(self) -> "UploadIntakeController":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
