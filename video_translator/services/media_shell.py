"""Media tool adapter built on ffmpeg-python.

Every operation runs ffmpeg or ffprobe as a blocking subprocess bounded by a
timeout. Failures surface as ``MediaToolError`` carrying the captured stderr,
or ``MediaUnreadable`` when the input itself cannot be probed.
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import List, Optional

import ffmpeg
import numpy as np

from .error_handler import MediaToolError, MediaUnreadable
from ..models.core import MediaInfo

logger = logging.getLogger(__name__)

# Working profile for extracted source audio
SPEECH_SAMPLE_RATE = 16000
# Working profile for synthesized speech, silence and the assembled track
SYNTH_SAMPLE_RATE = 24000

ATEMPO_MIN = 0.5
ATEMPO_MAX = 2.0


def _decode(stderr: Optional[bytes]) -> str:
    if not stderr:
        return ""
    return stderr.decode('utf-8', errors='replace')


def _as_float(value) -> Optional[float]:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if result >= 0 else None


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def atempo_chain(factor: float) -> List[float]:
    """Split a tempo factor into steps each within atempo's [0.5, 2.0] range."""
    if factor <= 0:
        raise ValueError(f"Tempo factor must be positive, got {factor}")
    steps = []
    remaining = factor
    while remaining > ATEMPO_MAX:
        steps.append(ATEMPO_MAX)
        remaining /= ATEMPO_MAX
    while remaining < ATEMPO_MIN:
        steps.append(ATEMPO_MIN)
        remaining /= ATEMPO_MIN
    steps.append(remaining)
    return steps


class MediaShell:
    """Wraps the ffmpeg command-line tools used by the pipeline."""

    def __init__(self, ffmpeg_cmd: str = 'ffmpeg', ffprobe_cmd: str = 'ffprobe', timeout: float = 600.0):
        """Initialize the media shell.

        Args:
            ffmpeg_cmd: ffmpeg executable
            ffprobe_cmd: ffprobe executable
            timeout: Upper bound in seconds for any single invocation
        """
        self.ffmpeg_cmd = ffmpeg_cmd
        self.ffprobe_cmd = ffprobe_cmd
        self.timeout = timeout

    def probe(self, media_path: str) -> MediaInfo:
        """Read duration and stream facts from a media file.

        Args:
            media_path: Path to the media file

        Returns:
            MediaInfo for the file

        Raises:
            MediaUnreadable: If ffprobe rejects the file or reports no duration
            MediaToolError: If ffprobe cannot be started or times out
        """
        if not os.path.exists(media_path):
            raise MediaUnreadable(f"Media file not found: {media_path}")

        try:
            data = ffmpeg.probe(media_path, cmd=self.ffprobe_cmd, timeout=self.timeout)
        except ffmpeg.Error as e:
            stderr = _decode(e.stderr)
            logger.warning(f"ffprobe rejected {media_path}: {stderr.strip()[-2000:]}")
            raise MediaUnreadable(f"ffprobe could not read {Path(media_path).name}")
        except subprocess.TimeoutExpired:
            raise MediaToolError(f"ffprobe timed out after {self.timeout:.0f}s on {Path(media_path).name}")
        except OSError as e:
            raise MediaToolError(f"Could not run {self.ffprobe_cmd}: {e}")
        except ValueError as e:
            raise MediaUnreadable(f"ffprobe returned unparseable output for {Path(media_path).name}: {e}")

        streams = data.get('streams') or []
        container = data.get('format') or {}
        video = next((s for s in streams if s.get('codec_type') == 'video'), None)
        audio = next((s for s in streams if s.get('codec_type') == 'audio'), None)

        duration = _as_float(container.get('duration'))
        if duration is None:
            stream_durations = [_as_float(s.get('duration')) for s in streams]
            stream_durations = [d for d in stream_durations if d is not None]
            duration = max(stream_durations) if stream_durations else None
        if duration is None:
            raise MediaUnreadable(f"ffprobe reported no duration for {Path(media_path).name}")

        return MediaInfo(
            duration_seconds=duration,
            has_audio_stream=audio is not None,
            video_codec=video.get('codec_name') if video else None,
            audio_codec=audio.get('codec_name') if audio else None,
            width=_as_int(video.get('width')) if video else None,
            height=_as_int(video.get('height')) if video else None,
            sample_rate=_as_int(audio.get('sample_rate')) if audio else None,
            channels=_as_int(audio.get('channels')) if audio else None,
        )

    def extract_audio(self, video_path: str, output_path: str) -> str:
        """Extract the audio track as mono 16 kHz 16-bit PCM WAV."""
        stream = ffmpeg.input(video_path).output(
            output_path, vn=None, acodec='pcm_s16le', ac=1, ar=SPEECH_SAMPLE_RATE
        )
        self._run(stream, 'extract_audio')
        return self._require_output(output_path, 'extract_audio')

    def split_segment(self, audio_path: str, start: float, duration: float, output_path: str) -> str:
        """Cut ``duration`` seconds starting at ``start`` into a new WAV file."""
        stream = ffmpeg.input(audio_path, ss=f"{start:.3f}", t=f"{duration:.3f}").output(
            output_path, acodec='pcm_s16le', ac=1, ar=SPEECH_SAMPLE_RATE
        )
        self._run(stream, 'split_segment')
        return self._require_output(output_path, 'split_segment')

    def concatenate(self, audio_paths: List[str], output_path: str) -> str:
        """Join audio files in the given order into one WAV file.

        Raises:
            ValueError: If no inputs are given
        """
        if not audio_paths:
            raise ValueError("Cannot concatenate an empty list of audio files")

        list_path = f"{output_path}.txt"
        with open(list_path, 'w', encoding='utf-8') as f:
            for path in audio_paths:
                escaped = os.path.abspath(path).replace("'", "'\\''")
                f.write(f"file '{escaped}'\n")

        try:
            stream = ffmpeg.input(list_path, format='concat', safe=0).output(
                output_path, acodec='pcm_s16le', ac=1, ar=SYNTH_SAMPLE_RATE
            )
            self._run(stream, 'concatenate')
        finally:
            if os.path.exists(list_path):
                os.unlink(list_path)
        return self._require_output(output_path, 'concatenate')

    def remux(
        self,
        video_path: str,
        audio_path: str,
        output_path: str,
        target_duration: Optional[float] = None
    ) -> str:
        """Replace the audio of a video without re-encoding the video stream.

        Args:
            video_path: Source video; its video stream is copied as-is
            audio_path: New audio track, encoded to AAC
            output_path: Destination MP4
            target_duration: Output length in seconds. A shorter audio track
                is padded with silence up to this length.

        Returns:
            Path to the muxed video
        """
        video_in = ffmpeg.input(video_path)
        audio = ffmpeg.input(audio_path).audio
        output_kwargs = dict(vcodec='copy', acodec='aac', audio_bitrate='128k', movflags='+faststart')
        if target_duration is not None:
            audio = audio.filter('apad')
            output_kwargs['t'] = f"{target_duration:.3f}"

        stream = ffmpeg.output(video_in.video, audio, output_path, **output_kwargs)
        self._run(stream, 'remux')
        return self._require_output(output_path, 'remux')

    def change_tempo(self, audio_path: str, factor: float, output_path: str) -> str:
        """Speed audio up (factor > 1) or slow it down (factor < 1) without pitch shift."""
        audio = ffmpeg.input(audio_path).audio
        for step in atempo_chain(factor):
            audio = audio.filter('atempo', f"{step:.6f}")
        stream = audio.output(output_path, acodec='pcm_s16le', ac=1, ar=SYNTH_SAMPLE_RATE)
        self._run(stream, 'change_tempo')
        return self._require_output(output_path, 'change_tempo')

    def normalize_audio(self, input_path: str, output_path: str) -> str:
        """Convert any audio file to the synthesized-speech PCM profile."""
        stream = ffmpeg.input(input_path).output(
            output_path, acodec='pcm_s16le', ac=1, ar=SYNTH_SAMPLE_RATE
        )
        self._run(stream, 'normalize_audio')
        return self._require_output(output_path, 'normalize_audio')

    def generate_silence(self, duration: float, output_path: str) -> str:
        """Write ``duration`` seconds of silence in the synthesized-speech profile."""
        stream = ffmpeg.input(
            f"anullsrc=r={SYNTH_SAMPLE_RATE}:cl=mono", format='lavfi', t=f"{duration:.3f}"
        ).output(output_path, acodec='pcm_s16le', ac=1, ar=SYNTH_SAMPLE_RATE)
        self._run(stream, 'generate_silence')
        return self._require_output(output_path, 'generate_silence')

    def read_pcm(self, audio_path: str, sample_rate: int = SPEECH_SAMPLE_RATE) -> np.ndarray:
        """Decode audio to mono int16 samples."""
        stream = ffmpeg.input(audio_path).output(
            'pipe:', format='s16le', acodec='pcm_s16le', ac=1, ar=sample_rate
        )
        raw = self._run(stream, 'read_pcm')
        return np.frombuffer(raw, dtype=np.int16)

    def _run(self, stream, operation: str) -> bytes:
        """Run an ffmpeg graph, enforcing the timeout.

        Returns:
            Captured stdout

        Raises:
            MediaToolError: On start failure, timeout or non-zero exit
        """
        try:
            process = (
                stream
                .global_args('-hide_banner', '-nostdin')
                .overwrite_output()
                .run_async(cmd=self.ffmpeg_cmd, pipe_stdout=True, pipe_stderr=True)
            )
        except OSError as e:
            raise MediaToolError(f"{operation}: could not run {self.ffmpeg_cmd}: {e}")

        try:
            stdout, stderr = process.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            _, stderr = process.communicate()
            raise MediaToolError(f"{operation} timed out after {self.timeout:.0f}s", stderr=_decode(stderr))

        if process.returncode != 0:
            raise MediaToolError(
                f"{operation} failed with exit code {process.returncode}",
                stderr=_decode(stderr)
            )
        return stdout or b""

    @staticmethod
    def _require_output(output_path: str, operation: str) -> str:
        if not os.path.exists(output_path):
            raise MediaToolError(f"{operation} did not create {Path(output_path).name}")
        return output_path
