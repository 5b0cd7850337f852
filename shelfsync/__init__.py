"""Local playback and reading companion for Audiobookshelf servers."""

__version__ = "0.1.0"
