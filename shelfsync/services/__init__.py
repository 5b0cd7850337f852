"""Services module."""

from .abs_client import (
    AudiobookshelfClient,
    AudiobookshelfError,
    ConfigurationError,
    DecodingError,
    ServerError,
    TransportError,
)
from .cover_cache import CoverCache
from .epub import CorruptArchive, EPUBContent, EPUBError, parse_epub
from .pagination import Pagination, paginate, paginate_spine
from .playback_manager import (
    NoItemLoaded,
    NoPlayableAudio,
    PlaybackError,
    PlaybackEvent,
    PlaybackManager,
    PlaybackState,
)
from .player import AudioPlayer, PlaybackClock
from .reader import EbookNotLoaded, EbookReader, NoEbookFile, ReaderError
from .websocket_manager import WebSocketManager

__all__ = [
    # AudiobookshelfClient
    "AudiobookshelfClient",
    "AudiobookshelfError",
    "ConfigurationError",
    "DecodingError",
    "ServerError",
    "TransportError",
    "CoverCache",
    # EPUB
    "CorruptArchive",
    "EPUBContent",
    "EPUBError",
    "parse_epub",
    "Pagination",
    "paginate",
    "paginate_spine",
    # PlaybackManager
    "NoItemLoaded",
    "NoPlayableAudio",
    "PlaybackError",
    "PlaybackEvent",
    "PlaybackManager",
    "PlaybackState",
    "AudioPlayer",
    "PlaybackClock",
    # EbookReader
    "EbookNotLoaded",
    "EbookReader",
    "NoEbookFile",
    "ReaderError",
    # WebSocketManager
    "WebSocketManager",
]
