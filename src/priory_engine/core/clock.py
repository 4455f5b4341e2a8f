from __future__ import annotations

import logging

from .rebuild import RebuildScheduler
from .types import SEGMENT_ORDER, GameState

logger = logging.getLogger(__name__)

SEGMENTS_PER_DAY = len(SEGMENT_ORDER)
SEGMENTS_ELAPSED_COUNTER = "segments_elapsed_today"


class TimeClock:
    """Advances the canonical-hours calendar one segment at a time."""

    def __init__(self, scheduler: RebuildScheduler):
        self._scheduler = scheduler

    def advance(self, state: GameState, lines: list[str], segments: int = 1) -> None:
        for _ in range(max(0, segments)):
            self._step(state, lines)
            self._weekly_beat(state, lines)

    def _step(self, state: GameState, lines: list[str]) -> None:
        index = (SEGMENT_ORDER.index(state.segment) + 1) % SEGMENTS_PER_DAY
        state.bump(SEGMENTS_ELAPSED_COUNTER)
        if index == 0:
            state.day += 1
            state.counters[SEGMENTS_ELAPSED_COUNTER] = 0
            state.adjust_priory("food", -1)
            if state.day % 5 == 0:
                state.adjust_priory("morale", -1)
            logger.debug("Day %s begins for %s", state.day, state.player_name)
            self._scheduler.process_day(state, lines)
        state.segment = SEGMENT_ORDER[index]

    def _weekly_beat(self, state: GameState, lines: list[str]) -> None:
        marker = f"week_{state.day}"
        if state.day % 7 != 0 or marker in state.flags:
            return

        state.flags.add(marker)
        lines.append("A week passes in Blackpine. News, grievances, and hopes gather at Saint Catherine.")

        fortitude = state.virtue("fortitude")
        humility = state.virtue("humility")
        temperance = state.virtue("temperance")
        charity = state.virtue("charity")

        if charity >= 4 and temperance <= 0:
            state.adjust_priory("treasury", -1)
            lines.append("Your generosity outpaced reserves this week. Treasury -1 (Charity vs Temperance).")

        if fortitude >= 4 and humility <= 0:
            state.adjust_priory("relations", -1)
            lines.append(
                "Your firmness was respected by some and resented by others. Relations -1 (Fortitude vs Humility)."
            )

        if state.virtue("hope") >= 3:
            state.adjust_priory("morale", 1)
            lines.append("Hope keeps the house from despair. Morale +1.")

        if state.virtue("faith") >= 3:
            state.adjust_priory("piety", 1)
            lines.append("Shared prayer steadies the priory in uncertainty. Piety +1.")
