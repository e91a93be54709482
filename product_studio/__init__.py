"""Product photo studio backend: crop, restyle with Gemini, download."""

__version__ = "0.1.0"
