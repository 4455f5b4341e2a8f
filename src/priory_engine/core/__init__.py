from .engine import GameEngine
from .codec import SaveCodec
from .content import ContentModel, load_content, load_content_dir
from .errors import CodeVerificationError, ContentError, PrioryError, StoreError
from .parser import Intent, ParsedInput, parse_input
from .ports import BlobStore, RandomSource
from .resolver import resolve_key
from .types import (
    EngineOutput,
    GameState,
    PartyOverview,
    PartyState,
    PlayerOverview,
    ResumeOutcome,
    Sex,
    TimedPrompt,
    TimeSegment,
)

__all__ = [
    "GameEngine",
    "SaveCodec",
    "ContentModel",
    "load_content",
    "load_content_dir",
    "CodeVerificationError",
    "ContentError",
    "PrioryError",
    "StoreError",
    "Intent",
    "ParsedInput",
    "parse_input",
    "BlobStore",
    "RandomSource",
    "resolve_key",
    "EngineOutput",
    "GameState",
    "PartyOverview",
    "PartyState",
    "PlayerOverview",
    "ResumeOutcome",
    "Sex",
    "TimedPrompt",
    "TimeSegment",
]
