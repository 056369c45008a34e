"""Data models for the Video Translator System."""
