from .config import EngineConfig, build_game_engine
from .core.content import ContentModel, load_content, load_content_dir
from .core.engine import GameEngine
from .core.types import EngineOutput, ResumeOutcome, Sex, TimedPrompt
from .persistence import FileBlobStore, PartyStore, SaveStore

__all__ = [
    "GameEngine",
    "EngineConfig",
    "build_game_engine",
    "ContentModel",
    "load_content",
    "load_content_dir",
    "EngineOutput",
    "ResumeOutcome",
    "Sex",
    "TimedPrompt",
    "FileBlobStore",
    "PartyStore",
    "SaveStore",
]
