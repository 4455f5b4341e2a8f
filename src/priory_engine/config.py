from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Mapping, Optional

from .core.codec import SaveCodec
from .core.content import ContentModel, load_content_dir
from .core.engine import GameEngine
from .core.party import DEFAULT_LORE_LIMIT, DEFAULT_PARTY_CAPACITY
from .core.ports import BlobStore, RandomSource
from .persistence.files import FileBlobStore
from .persistence.party_store import PartyStore
from .persistence.save_store import SaveStore

logger = logging.getLogger(__name__)

DEV_SAVE_SECRET = "DEV_ONLY_CHANGE_ME"


@dataclass(frozen=True)
class EngineConfig:
    save_secret: str = DEV_SAVE_SECRET
    build_id: str = "dev"
    data_root: str = "data"
    save_root: str = "saves"
    database_url: Optional[str] = None
    party_capacity: int = DEFAULT_PARTY_CAPACITY
    lore_limit: int = DEFAULT_LORE_LIMIT
    start_scene: str = "intro"
    home_scene: str = "house"
    life_path_menu: str = "life_path"
    main_quest: str = "main_rebuild_priory"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineConfig":
        env = os.environ if environ is None else environ
        return cls(
            save_secret=env.get("PRIORY_SAVE_SECRET") or DEV_SAVE_SECRET,
            build_id=env.get("PRIORY_BUILD_ID") or "dev",
            data_root=env.get("PRIORY_DATA_ROOT") or "data",
            save_root=env.get("PRIORY_SAVE_ROOT") or "saves",
            database_url=env.get("PRIORY_DATABASE_URL") or None,
        )


def build_blob_stores(config: EngineConfig) -> tuple[BlobStore, BlobStore]:
    """Return ``(saves, parties)`` document stores for ``config``."""
    if config.database_url:
        from .persistence.sqlalchemy import SQLAlchemyBlobStore, build_uow_factory

        uow_factory = build_uow_factory(config.database_url)
        return (
            SQLAlchemyBlobStore(uow_factory, namespace="saves"),
            SQLAlchemyBlobStore(uow_factory, namespace="parties"),
        )
    root = Path(config.save_root)
    return FileBlobStore(root), FileBlobStore(root / "parties")


def build_game_engine(
    config: EngineConfig | None = None,
    content: ContentModel | None = None,
    rng: RandomSource | None = None,
    clock: Callable[[], datetime] | None = None,
) -> GameEngine:
    config = config or EngineConfig.from_env()
    if config.save_secret == DEV_SAVE_SECRET:
        logger.warning("Using the development save secret; set PRIORY_SAVE_SECRET in production")
    if content is None:
        content = load_content_dir(config.data_root)

    codec = SaveCodec(config.save_secret)
    save_blobs, party_blobs = build_blob_stores(config)
    parties = PartyStore(party_blobs, codec, clock)
    return GameEngine(
        content=content,
        saves=SaveStore(save_blobs, codec),
        parties=parties,
        rng=rng,
        clock=clock,
        build_id=config.build_id,
        party_capacity=config.party_capacity,
        lore_limit=config.lore_limit,
        start_scene=config.start_scene,
        home_scene=config.home_scene,
        life_path_menu=config.life_path_menu,
        main_quest=config.main_quest,
    )
