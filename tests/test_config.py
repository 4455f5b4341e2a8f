from __future__ import annotations

import logging

from conftest import StubRandom

from priory_engine.config import DEV_SAVE_SECRET, EngineConfig, build_blob_stores, build_game_engine
from priory_engine.persistence import FileBlobStore
from priory_engine.persistence.sqlalchemy import SQLAlchemyBlobStore


def test_from_env_defaults():
    config = EngineConfig.from_env({})
    assert config.save_secret == DEV_SAVE_SECRET
    assert config.build_id == "dev"
    assert config.database_url is None
    assert config.party_capacity == 6


def test_from_env_reads_priory_variables():
    config = EngineConfig.from_env(
        {
            "PRIORY_SAVE_SECRET": "s3cret",
            "PRIORY_BUILD_ID": "1.4.0",
            "PRIORY_DATA_ROOT": "/srv/priory/data",
            "PRIORY_SAVE_ROOT": "/srv/priory/saves",
            "PRIORY_DATABASE_URL": "sqlite:///priory.db",
        }
    )
    assert config.save_secret == "s3cret"
    assert config.build_id == "1.4.0"
    assert config.data_root == "/srv/priory/data"
    assert config.save_root == "/srv/priory/saves"
    assert config.database_url == "sqlite:///priory.db"


def test_blob_stores_follow_database_url(tmp_path):
    saves, parties = build_blob_stores(EngineConfig(database_url="sqlite+pysqlite:///:memory:"))
    assert isinstance(saves, SQLAlchemyBlobStore)
    assert (saves.namespace, parties.namespace) == ("saves", "parties")

    saves, parties = build_blob_stores(EngineConfig(save_root=str(tmp_path)))
    assert isinstance(saves, FileBlobStore)
    assert parties.root == tmp_path / "parties"


def test_engine_over_sqlite(content):
    config = EngineConfig(save_secret="k", build_id="b7", database_url="sqlite+pysqlite:///:memory:")
    eng = build_game_engine(config, content=content, rng=StubRandom())
    eng.start_new_game("Ada", life_path="farmer_son")

    code, _ = eng.save_game()
    outcome = eng.resume(code)
    assert outcome.ok
    assert eng.state.player_name == "Ada"
    assert eng.handle_input("version").lines == ["Version: b7"]


def test_engines_share_file_saves(tmp_path, content):
    config = EngineConfig(save_secret="k", save_root=str(tmp_path))
    first = build_game_engine(config, content=content, rng=StubRandom())
    first.start_new_game("Bede", life_path="farmer_son")
    code, _ = first.save_game()

    second = build_game_engine(config, content=content, rng=StubRandom())
    assert second.resume(code).ok
    assert second.state.player_name == "Bede"


def test_dev_secret_warns(caplog, content, tmp_path):
    with caplog.at_level(logging.WARNING, logger="priory_engine.config"):
        build_game_engine(EngineConfig(save_root=str(tmp_path)), content=content)
    assert "development save secret" in caplog.text
