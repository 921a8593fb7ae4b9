"""NotePal: an AI chat assistant for a note-taking app."""

__version__ = "0.1.0"

__all__ = ["__version__"]
