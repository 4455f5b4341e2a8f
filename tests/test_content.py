from __future__ import annotations

import json

import pytest

from priory_engine.core.content import (
    ActionKind,
    ScriptKind,
    decode_action,
    decode_script,
    load_content,
    load_content_dir,
)
from priory_engine.core.errors import ContentError


def test_decode_action_prefixes():
    assert decode_action("menu:steward_menu").kind is ActionKind.MENU
    assert decode_action("timed:bell_alarm").value == "bell_alarm"
    assert decode_action("scene:chapel").kind is ActionKind.SCENE

    target = decode_action("script:shop:chandler")
    assert target.kind is ActionKind.SCRIPT
    assert target.script.kind is ScriptKind.SHOP
    assert target.script.arg == "chandler"

    plain = decode_action("The candles gutter.")
    assert plain.kind is ActionKind.TEXT
    assert plain.value == "The candles gutter."


def test_decode_script_kinds():
    assert decode_script(None) is None
    assert decode_script("   ") is None
    assert decode_script("task:sermon").kind is ScriptKind.TASK
    assert decode_script("minigame:woodcut").arg == "woodcut"
    assert decode_script("rebuild:upgrade/chapel_roof").kind is ScriptKind.REBUILD

    named = decode_script("check_progress")
    assert named.kind is ScriptKind.NAMED
    assert named.arg == "check_progress"


def test_task_scripts_do_not_advance_time_on_menus():
    assert not decode_script("task:sermon").advances_time_on_menu
    assert decode_script("chance:church_alms_box").advances_time_on_menu


def test_camel_case_fields_are_accepted():
    content = load_content(
        {
            "lifePaths": [
                {"Id": "scribe", "Name": "Scribe", "coinMin": 2, "coinMax": 4, "starterItems": "Quill"}
            ],
            "menus": [
                {
                    "id": "m",
                    "prompt": "Choose.",
                    "options": [{"text": "Go", "nextScene": "yard", "setFlags": ["went"], "coinDelta": -2}],
                }
            ],
        }
    )
    path = content.life_paths["scribe"]
    assert (path.coin_min, path.coin_max) == (2, 4)
    assert path.starter_items == ("Quill",)

    option = content.menus["m"].options[0]
    assert option.next_scene == "yard"
    assert option.set_flags == ("went",)
    assert option.coin_delta == -2


def test_id_keyed_mappings():
    content = load_content(
        {
            "scenes": {"yard": {"text": "Mud.", "exits": {"house": "house"}, "endChapter": True}},
            "quests": {"q1": {"title": "First"}},
        }
    )
    assert content.scenes["yard"].exits == {"house": "house"}
    assert content.scenes["yard"].end_chapter
    assert content.quests["q1"].min_party_size == 1


def test_missing_sections_are_empty():
    content = load_content({})
    assert content.scenes == {}
    assert content.rebuild_nodes == {}


@pytest.mark.parametrize(
    "data",
    [
        {"scenes": "nope"},
        {"scenes": [{"text": "no id"}]},
        {"scenes": ["not an object"]},
        {"timed": [{"id": "t", "prompt": "?", "seconds": "soon"}]},
        {"life_paths": [{"id": "p", "coin_min": 5, "coin_max": 2}]},
        {"menus": [{"id": "m", "options": [{"text": "x", "virtue_delta": {"faith": "lots"}}]}]},
    ],
)
def test_malformed_content_raises(data):
    with pytest.raises(ContentError):
        load_content(data)


def test_load_content_dir(tmp_path):
    (tmp_path / "scenes").mkdir()
    (tmp_path / "dialogue").mkdir()
    (tmp_path / "scenes" / "house.json").write_text(
        json.dumps({"id": "house", "text": "A cold room.", "actions": {"bell": "timed:alarm"}}),
        encoding="utf-8",
    )
    (tmp_path / "dialogue" / "menus.json").write_text(
        json.dumps([{"id": "m", "prompt": "?", "options": [{"text": "a"}]}]),
        encoding="utf-8",
    )
    (tmp_path / "rebuild_nodes.json").write_text(
        json.dumps([{"node_id": "roof", "name": "Roof", "levels": [{"level": 1, "name": "Thatch"}]}]),
        encoding="utf-8",
    )

    content = load_content_dir(tmp_path)

    assert content.scenes["house"].actions["bell"].kind is ActionKind.TIMED
    assert len(content.menus["m"].options) == 1
    assert content.rebuild_nodes["roof"].level(1).name == "Thatch"
    assert content.timed == {}


def test_load_content_dir_rejects_bad_json(tmp_path):
    (tmp_path / "quests.json").write_text("{oops", encoding="utf-8")
    with pytest.raises(ContentError):
        load_content_dir(tmp_path)
