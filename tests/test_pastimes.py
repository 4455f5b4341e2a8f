from __future__ import annotations

from conftest import StubRandom

from priory_engine.core.pastimes import MARK_COUNTER, TASKS, Pastimes
from priory_engine.core.types import GameState


def test_sermon_task_updates_priory_and_counters():
    state = GameState()
    lines: list[str] = []
    assert Pastimes(StubRandom()).run_task(state, "sermon", lines) == 1

    assert state.priory["piety"] == 52
    assert state.priory["relations"] == 51
    assert state.counter("task_sermon") == 1
    assert state.counter("task_total") == 1
    assert lines == [TASKS["sermon"].flavour[0]]


def test_unknown_task_still_takes_a_segment():
    state = GameState()
    lines: list[str] = []
    assert Pastimes(StubRandom()).run_task(state, "nap", lines) == 1
    assert lines == []
    assert state.counter("task_total") == 0


def test_unknown_minigame():
    lines: list[str] = []
    assert Pastimes(StubRandom()).play_minigame(GameState(), "chess", lines) == 0
    assert lines == ["That pastime is not available."]


def test_woodcut_always_succeeds():
    state = GameState()
    lines: list[str] = []
    Pastimes(StubRandom()).play_minigame(state, "woodcut", lines)
    assert state.inventory == ["Logs", "Timber Planks", "Charcoal Sack"]
    assert state.priory["treasury"] == 31
    assert state.virtue("temperance") == 1
    assert lines[-1] == "Materials delivered with minimal waste. Treasury +1."


def test_ledger_roll_threshold():
    state = GameState()
    lines: list[str] = []
    Pastimes(StubRandom(ints=[17])).play_minigame(state, "ledger", lines)
    assert state.coin == 2
    assert state.priory["treasury"] == 31

    state = GameState()
    Pastimes(StubRandom(ints=[16])).play_minigame(state, "ledger", lines)
    assert state.coin == 0
    assert state.priory["morale"] == 49


def test_alms_box_runs_once():
    state = GameState()
    pastimes = Pastimes(StubRandom(ints=[18]))
    lines: list[str] = []
    assert pastimes.resolve_chance(state, "church_alms_box", lines) == 0
    assert state.coin == 4
    assert state.priory["relations"] == 53
    assert state.virtue("charity") == 1

    lines.clear()
    pastimes.resolve_chance(state, "church_alms_box", lines)
    assert lines == ["You have already accounted for the alms box this week; the clerk waves you onward."]
    assert state.coin == 4


def test_scout_failure_is_counted():
    state = GameState()
    lines: list[str] = []
    Pastimes(StubRandom()).resolve_chance(state, "watch_patrol_scout", lines)
    assert state.counter("watch_scout_attempt") == 1
    assert lines[-1] == "No decisive result this time. You can try again later."


def test_unknown_chance_event():
    lines: list[str] = []
    Pastimes(StubRandom()).resolve_chance(GameState(), "meteor", lines)
    assert lines == ["Nothing comes of that attempt."]


def test_day_loop_consumes_the_rest_of_the_day():
    state = GameState()
    state.counters["segments_elapsed_today"] = 4
    lines: list[str] = []
    pastimes = Pastimes(StubRandom())
    assert pastimes.handles("day_loop")
    assert pastimes.run_named(state, "day_loop", lines) == 5
    assert state.virtue("temperance") == 1
    assert state.priory["morale"] == 51
    assert state.counter("segments_elapsed_today") == 0


def test_mark_exchange():
    state = GameState(coin=320)
    pastimes = Pastimes(StubRandom())
    lines: list[str] = []

    pastimes.run_named(state, "exchange_to_mark", lines)
    assert state.coin == 160
    assert state.counter(MARK_COUNTER) == 1

    pastimes.run_named(state, "exchange_to_pence", lines)
    assert state.coin == 310
    assert state.counter(MARK_COUNTER) == 0

    pastimes.run_named(state, "exchange_to_pence", lines)
    assert lines[-1] == "You carry no Lübeck marks to redeem."


def test_tavern_dice_needs_coin():
    lines: list[str] = []
    assert Pastimes(StubRandom()).play_minigame(GameState(), "tavern_dice", lines) == 0
    assert lines == ["You have no coin to wager at the table."]


def test_empty_fishing_trip():
    state = GameState()
    lines: list[str] = []
    Pastimes(StubRandom()).play_minigame(state, "fishing", lines)
    assert lines[0] == "You fish the cold water for 3 attempts."
    assert lines[-1] == "You return empty-handed, but with clearer eyes."
    assert state.virtue("temperance") == 1


def test_tight_crafting_requires_paired_materials():
    state = GameState(inventory=["Comfrey Bundle"])
    lines: list[str] = []
    pastimes = Pastimes(StubRandom())
    assert pastimes.run_named(state, "tight_crafting", lines) == 0

    state.inventory.append("Timber Planks")
    assert pastimes.run_named(state, "tight_crafting", lines) == 1
    assert "Field Bandage Kit" in state.inventory
    assert not pastimes.handles("check_progress")
