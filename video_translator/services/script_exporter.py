"""Script and subtitle export for translated jobs.

Writes the side-by-side source/target script document and SRT subtitles
built from chunk timings.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from .error_handler import ErrorHandler, ErrorSeverity
from ..models.core import AudioChunk
from ..models.languages import language_name

COLUMN_WIDTH = 65
EMPTY_SCRIPT = "[Empty script]"


class ScriptExporter:
    """Service for exporting scripts and subtitles for a translated language."""

    def __init__(self, error_handler: Optional[ErrorHandler] = None):
        """Initialize the script exporter.

        Args:
            error_handler: Optional error handler for logging
        """
        self.error_handler = error_handler or ErrorHandler()

    def export_script_document(
        self,
        chunks: List[AudioChunk],
        source_language: str,
        target_language: str,
        output_path: str
    ) -> bool:
        """Export the source and translated transcript of every chunk.

        Args:
            chunks: Processed chunks carrying transcript and translated text
            source_language: Source language code
            target_language: Target language code
            output_path: Path to the output text file

        Returns:
            True if export successful, False otherwise
        """
        ordered = sorted(chunks, key=lambda chunk: chunk.index)
        source_name = language_name(source_language)
        target_name = language_name(target_language)

        try:
            with open(output_path, 'w', encoding='utf-8') as f:
                f.write("VIDEO TRANSLATION SCRIPT\n")
                f.write("=" * (COLUMN_WIDTH * 2 + 1) + "\n")
                f.write(f"Source language: {source_name} ({source_language})\n")
                f.write(f"Target language: {target_name} ({target_language})\n")
                f.write(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
                f.write(f"Chunks: {len(ordered)}\n\n")

                for position, chunk in enumerate(ordered, start=1):
                    start = self._format_srt_timestamp(chunk.start)
                    end = self._format_srt_timestamp(chunk.end)
                    f.write(f"CHUNK {position}: [{start} --> {end}]\n")
                    f.write("-" * COLUMN_WIDTH + "+" + "-" * COLUMN_WIDTH + "\n")
                    f.write(f"{source_name.upper():<{COLUMN_WIDTH}}| {target_name.upper()}\n")
                    f.write(self.clean_script(chunk.transcript) + "\n")
                    f.write("~" * COLUMN_WIDTH + "\n")
                    f.write(self.clean_script(chunk.translated_text) + "\n\n")

            self.error_handler.log_info(
                f"Exported script document to {output_path}",
                context={'num_chunks': len(ordered), 'target_language': target_language}
            )
            return True

        except OSError as e:
            self.error_handler.log_error(
                e,
                severity=ErrorSeverity.ERROR,
                context={'output_path': output_path, 'format': 'script'},
                recovery_suggestion="Check file permissions and disk space"
            )
            return False

    def export_srt(
        self,
        chunks: List[AudioChunk],
        output_path: str,
        use_translation: bool = True
    ) -> bool:
        """Export subtitles in SRT format, one cue per chunk.

        Args:
            chunks: Processed chunks
            output_path: Path to output SRT file
            use_translation: Whether to use the translation instead of the transcript

        Returns:
            True if export successful, False otherwise
        """
        ordered = sorted(chunks, key=lambda chunk: chunk.index)
        try:
            with open(output_path, 'w', encoding='utf-8') as f:
                cue = 0
                for chunk in ordered:
                    text = chunk.translated_text if use_translation else chunk.transcript
                    if not text or not text.strip():
                        continue
                    cue += 1
                    f.write(f"{cue}\n")
                    f.write(f"{self._format_srt_timestamp(chunk.start)} --> "
                            f"{self._format_srt_timestamp(chunk.end)}\n")
                    f.write(f"{text.strip()}\n\n")

            self.error_handler.log_info(
                f"Successfully exported SRT subtitles to {output_path}",
                context={'num_chunks': len(ordered), 'use_translation': use_translation}
            )
            return True

        except OSError as e:
            self.error_handler.log_error(
                e,
                severity=ErrorSeverity.ERROR,
                context={'output_path': output_path, 'format': 'SRT'},
                recovery_suggestion="Check file permissions and disk space"
            )
            return False

    @staticmethod
    def clean_script(script: Optional[str]) -> str:
        """Collapse whitespace and make sure the script ends with punctuation."""
        if not script or not script.strip():
            return EMPTY_SCRIPT
        cleaned = " ".join(script.split())
        if cleaned[-1] not in ".!?।\"'":
            cleaned += "."
        return cleaned

    def _format_srt_timestamp(self, seconds: float) -> str:
        """Format timestamp for SRT format (HH:MM:SS,mmm).

        Args:
            seconds: Time in seconds

        Returns:
            Formatted timestamp string
        """
        td = timedelta(seconds=max(0.0, seconds))
        total_millis = int(round(td.total_seconds() * 1000))
        hours, remainder = divmod(total_millis, 3_600_000)
        minutes, remainder = divmod(remainder, 60_000)
        secs, millis = divmod(remainder, 1000)

        return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"
