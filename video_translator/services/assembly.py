"""Assembles synthesized chunk audio into the final translated video."""

import logging
import os
from typing import List, Optional

from .error_handler import AssemblyFailed, ErrorHandler
from .media_shell import MediaShell
from ..models.core import AssembledMedia, AudioChunk, ProcessingConfig

logger = logging.getLogger(__name__)

# Source gaps shorter than this are ignored
MIN_GAP_SECONDS = 0.05


class AssemblyEngine:
    """Concatenates chunk audio in index order and re-muxes it into the video."""

    def __init__(
        self,
        media_shell: MediaShell,
        config: ProcessingConfig,
        error_handler: Optional[ErrorHandler] = None
    ):
        self.media_shell = media_shell
        self.config = config
        self.error_handler = error_handler or ErrorHandler()

    def assemble(
        self,
        chunks: List[AudioChunk],
        original_video: str,
        workdir: str,
        output_name: str = "output"
    ) -> AssembledMedia:
        """Build the translated video from synthesized chunks.

        Args:
            chunks: Chunks carrying synthesized audio, in any order
            original_video: Source video whose video stream is copied
            workdir: Directory for intermediate and output files
            output_name: Base name for the output files

        Returns:
            AssembledMedia with the video path, audio path and final duration

        Raises:
            AssemblyFailed: If there are no chunks or one lacks synthesized audio
        """
        if not chunks:
            raise AssemblyFailed("No synthesized chunks to assemble")

        ordered = sorted(chunks, key=lambda chunk: chunk.index)
        missing = [c.index for c in ordered if not c.synthesized_path or not os.path.exists(c.synthesized_path)]
        if missing:
            raise AssemblyFailed(f"Missing synthesized audio for chunk(s) {missing}")

        pieces = []
        cursor = 0.0
        for chunk in ordered:
            gap = chunk.start - cursor
            if gap >= MIN_GAP_SECONDS:
                logger.warning(f"Filling {gap:.2f}s source gap before chunk {chunk.index} with silence")
                silence_path = os.path.join(workdir, f"{output_name}_gap_{chunk.index:04d}.wav")
                pieces.append(self._media(self.media_shell.generate_silence, gap, silence_path))
            pieces.append(chunk.synthesized_path)
            cursor = chunk.end

        audio_path = os.path.join(workdir, f"{output_name}_audio.wav")
        self._media(self.media_shell.concatenate, pieces, audio_path)

        video_info = self._media(self.media_shell.probe, original_video)
        audio_info = self._media(self.media_shell.probe, audio_path)
        target_duration = max(video_info.duration_seconds, audio_info.duration_seconds)
        logger.info(
            f"Assembling {len(ordered)} chunk(s): video {video_info.duration_seconds:.2f}s, "
            f"audio {audio_info.duration_seconds:.2f}s, output {target_duration:.2f}s"
        )

        video_path = os.path.join(workdir, f"{output_name}.mp4")
        self._media(self.media_shell.remux, original_video, audio_path, video_path, target_duration)
        return AssembledMedia(video_path=video_path, audio_path=audio_path, duration=target_duration)

    def _media(self, func, *args):
        return self.error_handler.call_with_retry(
            func,
            *args,
            attempts=self.config.retry_attempts,
            base_delay=self.config.retry_delay_seconds,
            operation=getattr(func, '__name__', 'media')
        )
