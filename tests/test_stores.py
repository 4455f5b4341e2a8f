from __future__ import annotations

import pytest

from conftest import StubBlobStore

from priory_engine.core.errors import StoreError
from priory_engine.core.serialization import party_from_dict, party_to_dict, state_from_dict, state_to_dict
from priory_engine.core.types import ChoiceKey, GameState, PartyState, Sex, TimeSegment
from priory_engine.persistence import FileBlobStore, PartyStore, SaveStore
from priory_engine.persistence.sqlalchemy import SQLAlchemyBlobStore


def test_file_blob_store_round_trip(tmp_path):
    store = FileBlobStore(tmp_path / "saves")
    assert store.read("ABC123") is None
    assert not store.exists("ABC123")

    store.write("ABC123", b'{"x":1}')
    assert store.exists("ABC123")
    assert store.read("ABC123") == b'{"x":1}'
    assert (tmp_path / "saves" / "ABC123.json").is_file()


@pytest.mark.parametrize("doc_id", ["", "../escape", "a/b", "x" * 65])
def test_file_blob_store_rejects_unsafe_ids(tmp_path, doc_id):
    store = FileBlobStore(tmp_path)
    with pytest.raises(StoreError):
        store.write(doc_id, b"{}")


def test_sqlalchemy_store_overwrites_and_bumps_version(uow_factory):
    store = SQLAlchemyBlobStore(uow_factory, namespace="parties")
    store.write("P1", b"one")
    store.write("P1", b"two")
    assert store.read("P1") == b"two"

    with uow_factory() as uow:
        row = uow.documents.get("parties", "P1")
        assert row.row_version == 2


def test_sqlalchemy_namespaces_are_isolated(uow_factory):
    saves = SQLAlchemyBlobStore(uow_factory, namespace="saves")
    parties = SQLAlchemyBlobStore(uow_factory, namespace="parties")
    saves.write("SAME", b"save")
    parties.write("SAME", b"party")

    assert saves.read("SAME") == b"save"
    assert parties.read("SAME") == b"party"
    assert not saves.exists("OTHER")


def test_save_store_round_trip(uow_factory, codec):
    store = SaveStore(SQLAlchemyBlobStore(uow_factory), codec)
    state = GameState(player_name="Ada", sex=Sex.FEMALE, coin=12, segment=TimeSegment.VESPERS)
    state.flags.add("grain_pledged")
    state.inventory.append("Rosary")

    code, fingerprint = store.save(state)
    loaded, message = store.load_by_code(code)

    assert message == ""
    assert len(fingerprint) == 8
    assert loaded.player_name == "Ada"
    assert loaded.sex is Sex.FEMALE
    assert loaded.segment is TimeSegment.VESPERS
    assert "GRAIN_PLEDGED" in loaded.flags
    assert loaded.inventory == ["Rosary"]


def test_save_store_messages(codec):
    store = SaveStore(StubBlobStore(), codec)
    assert store.load_by_code("BP-NOPE") == (None, "Could not verify resume code.")
    assert store.load_by_code(codec.make_code("0123456789")) == (
        None,
        "Resume code valid, but save file not found.",
    )


def test_party_store_create_and_join(codec, clock):
    blobs = StubBlobStore()
    store = PartyStore(blobs, codec, clock)
    party, code = store.create_party()

    loaded, message = store.try_load_by_code(code)
    assert message == "Joined party."
    assert loaded.party_id == party.party_id
    assert loaded.created_at == clock()

    missing = codec.make_party_code("000000000000")
    assert store.try_load_by_code(missing) == (None, "Party code verified, but no party file was found.")


def test_party_store_treats_corrupt_document_as_missing(codec):
    blobs = StubBlobStore()
    blobs.write("P1", b"{not json")
    assert PartyStore(blobs, codec).load("P1") is None


def test_state_serialization_keeps_structured_keys():
    state = GameState(player_name="Bede", active_menu_id="steward_menu")
    state.shared.consumed_choices.add(ChoiceKey("steward_menu", 2))
    state.shared.taken_actions.add(("house", "candles"))
    state.rebuild.node_levels["chapel_roof"] = 1

    restored = state_from_dict(state_to_dict(state))

    assert restored.shared.consumed_choices == {ChoiceKey("steward_menu", 2)}
    assert restored.shared.taken_actions == {("house", "candles")}
    assert restored.rebuild.node_level("chapel_roof") == 1
    assert restored.active_menu_id == "steward_menu"


def test_state_from_dict_tolerates_bad_enums():
    restored = state_from_dict({"sex": "other", "segment": "Lauds"})
    assert restored.sex is Sex.UNKNOWN
    assert restored.segment is TimeSegment.PRIME


def test_party_serialization(clock):
    party = PartyState(party_id="P1", created_at=clock())
    party.shared.flags.add("bell_rung")
    restored = party_from_dict(party_to_dict(party))
    assert restored.created_at == clock()
    assert "bell_rung" in restored.shared.flags
