"""Service layer for the Video Translator System."""

from .assembly import AssemblyEngine
from .chunking import ChunkingEngine
from .config_manager import ConfigurationManager, HardwareInfo, ResourceUsage
from .dubbing_service import DubbingService
from .error_handler import ErrorHandler, ErrorRecord, ErrorSeverity, VideoTranslatorError
from .job_context import JobContext, ProgressTracker
from .job_store import InMemoryJobStore
from .media_shell import MediaShell
from .notification import LoggingNotificationSink
from .orchestrator import JobOrchestrator
from .script_exporter import ScriptExporter
from .storage import LocalObjectStorage
from .text_heuristics import HeuristicProperNounDetector, Strictness, UnicodeScriptClassifier
from .transcription_service import FasterWhisperRecognizer, TranscriptionService
from .translation_service import TranslationService
from .tts_service import EdgeTTSBackend, SpeechSynthesisEngine
from .voice_analysis import SpeakerAnalyzer

__all__ = [
    'AssemblyEngine',
    'ChunkingEngine',
    'ConfigurationManager',
    'HardwareInfo',
    'ResourceUsage',
    'DubbingService',
    'ErrorHandler',
    'ErrorRecord',
    'ErrorSeverity',
    'VideoTranslatorError',
    'JobContext',
    'ProgressTracker',
    'InMemoryJobStore',
    'MediaShell',
    'LoggingNotificationSink',
    'JobOrchestrator',
    'ScriptExporter',
    'LocalObjectStorage',
    'HeuristicProperNounDetector',
    'Strictness',
    'UnicodeScriptClassifier',
    'FasterWhisperRecognizer',
    'TranscriptionService',
    'TranslationService',
    'EdgeTTSBackend',
    'SpeechSynthesisEngine',
    'SpeakerAnalyzer',
]
