"""Splits extracted audio into bounded-duration chunks."""

import logging
import math
import os
from typing import List, Optional, Tuple

from .error_handler import MediaToolError, MediaUnreadable, NoAudioContent
from .media_shell import MediaShell
from ..models.core import AudioChunk, ProcessingConfig

logger = logging.getLogger(__name__)


class ChunkingEngine:
    """Turns one audio file into an ordered list of AudioChunk objects."""

    def __init__(self, media_shell: MediaShell, config: ProcessingConfig):
        self.media_shell = media_shell
        self.config = config

    def plan(self, total_duration: float, nominal_seconds: float) -> List[Tuple[int, float, float]]:
        """Compute the chunk layout for an audio duration.

        Args:
            total_duration: Length of the audio in seconds
            nominal_seconds: Requested chunk length, raised to the configured floor

        Returns:
            List of (index, start, duration); a too-short tail is omitted
        """
        nominal = max(float(nominal_seconds), self.config.min_chunk_seconds)
        count = math.ceil(total_duration / nominal)
        layout = []
        for index in range(count):
            start = index * nominal
            end = min((index + 1) * nominal, total_duration)
            if end - start < self.config.min_chunk_duration_seconds:
                continue
            layout.append((index, start, end - start))
        return layout

    def chunk(
        self,
        audio_path: str,
        workdir: str,
        nominal_seconds: Optional[float] = None
    ) -> List[AudioChunk]:
        """Split an audio file into validated chunks.

        Args:
            audio_path: Extracted source audio
            workdir: Job directory that receives chunk files
            nominal_seconds: Chunk length; defaults to the configured value

        Returns:
            Chunks ordered by start offset; never empty

        Raises:
            NoAudioContent: If the audio has no audio stream or zero length
            MediaUnreadable: If the audio cannot be probed
        """
        nominal_seconds = nominal_seconds or self.config.chunk_duration_seconds
        info = self.media_shell.probe(audio_path)
        if not info.has_audio_stream or info.duration_seconds <= 0:
            raise NoAudioContent(f"No audio content in {os.path.basename(audio_path)}")

        total = info.duration_seconds
        layout = self.plan(total, nominal_seconds)
        logger.info(
            f"Splitting {total:.1f}s of audio into {len(layout)} chunk(s) "
            f"of up to {max(nominal_seconds, self.config.min_chunk_seconds):.0f}s"
        )

        chunks = []
        for index, start, duration in layout:
            chunk_path = os.path.join(workdir, f"chunk_{index:04d}.wav")
            try:
                self.media_shell.split_segment(audio_path, start, duration, chunk_path)
            except MediaToolError as e:
                logger.warning(f"Discarding chunk {index}: split failed ({e})")
                continue
            if not self._is_valid(chunk_path):
                logger.warning(f"Discarding chunk {index}: failed validation")
                continue
            chunks.append(AudioChunk(index=index, start=start, duration=duration, path=chunk_path))

        if not chunks:
            logger.warning("No chunk survived validation; using the whole audio as a single chunk")
            chunks = [AudioChunk(index=0, start=0.0, duration=total, path=audio_path)]

        return chunks

    def _is_valid(self, chunk_path: str) -> bool:
        if not os.path.exists(chunk_path):
            return False
        if os.path.getsize(chunk_path) <= self.config.min_chunk_bytes:
            return False
        try:
            info = self.media_shell.probe(chunk_path)
        except (MediaUnreadable, MediaToolError) as e:
            logger.debug(f"Chunk probe failed for {chunk_path}: {e}")
            return False
        return info.duration_seconds >= self.config.min_chunk_duration_seconds
