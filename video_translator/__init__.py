"""Video Translator System: dub a video's speech into other languages."""

__version__ = "0.1.0"
