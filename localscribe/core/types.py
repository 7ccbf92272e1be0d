"""
Data model shared by capture, engines and the streaming pipeline.
"""

from dataclasses import dataclass, field

import numpy as np


@dataclass(frozen=True)
class AudioBuffer:
    """Mono float32 samples. Channel count is kept as metadata only."""

    samples: np.ndarray
    sample_rate: int
    channels: int = 1

    @property
    def duration_s(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return len(self.samples) / self.sample_rate

    def slice(self, start: int, end: int) -> "AudioBuffer":
        return AudioBuffer(self.samples[start:end], self.sample_rate, self.channels)


@dataclass(frozen=True)
class ChunkBoundary:
    """Half-open sample range [start_sample, end_sample)."""

    start_sample: int
    end_sample: int

    @property
    def num_samples(self) -> int:
        return self.end_sample - self.start_sample


@dataclass(frozen=True)
class Segment:
    start_ms: int
    end_ms: int
    text: str


@dataclass
class TranscriptionResult:
    """Text produced for one buffer (or one whole session)."""

    text: str
    language: str | None = None
    duration_ms: int = 0
    segments: list[Segment] | None = None


@dataclass(frozen=True)
class StreamingUpdate:
    """Incremental transcript published while a session is still recording."""

    text: str
    chunks_completed: int


@dataclass
class StreamingState:
    """
    Per-session accumulator.

    Created when a session starts, appended to as chunks complete, consumed
    when the session stops and dropped when it is cancelled.
    """

    completed_text: str = ""
    chunks_completed: int = 0
    locked_language: str | None = None
    total_duration_ms: int = 0
    segments: list[Segment] = field(default_factory=list)
    audio_offset_ms: int = 0

    def append_chunk(self, result: TranscriptionResult, chunk_ms: int) -> None:
        """Fold one chunk result into the accumulator."""
        self.completed_text = merge_chunk_text(self.completed_text, result.text)
        self.chunks_completed += 1
        self.total_duration_ms += result.duration_ms

        # First non-empty language wins for the whole session
        if not self.locked_language and result.language:
            self.locked_language = result.language

        for seg in result.segments or []:
            self.segments.append(
                Segment(
                    start_ms=seg.start_ms + self.audio_offset_ms,
                    end_ms=seg.end_ms + self.audio_offset_ms,
                    text=seg.text,
                )
            )
        self.audio_offset_ms += chunk_ms

    def skip_chunk(self, chunk_ms: int) -> None:
        """Account for a chunk whose transcription failed."""
        self.audio_offset_ms += chunk_ms

    def to_result(self) -> TranscriptionResult:
        return TranscriptionResult(
            text=self.completed_text,
            language=self.locked_language,
            duration_ms=self.total_duration_ms,
            segments=list(self.segments) if self.segments else None,
        )


SENTENCE_END = (".", "!", "?")


def merge_chunk_text(accumulated: str, new_text: str) -> str:
    """
    Append a chunk's text to the running transcript.

    A chunk-bounded model tends to close every window with a full stop. When
    the accumulated text ends in sentence punctuation and the new chunk
    continues in lowercase, that punctuation is dropped before joining.
    """
    new_text = new_text.strip()
    if not new_text:
        return accumulated
    if not accumulated:
        return new_text

    if accumulated.endswith(SENTENCE_END) and new_text[0].islower():
        accumulated = accumulated[:-1]
    return f"{accumulated} {new_text}"
