from __future__ import annotations

import logging

from ..core.codec import SaveCodec, new_save_id
from ..core.errors import CodeVerificationError
from ..core.normalize import dump_json, parse_json_dict
from ..core.ports import BlobStore
from ..core.serialization import state_from_dict, state_to_dict
from ..core.types import GameState

logger = logging.getLogger(__name__)


class SaveStore:
    """Immutable save slots addressed by signed ``BP-`` codes."""

    def __init__(self, blobs: BlobStore, codec: SaveCodec):
        self._blobs = blobs
        self._codec = codec

    def save(self, state: GameState) -> tuple[str, str]:
        """Write a new slot and return ``(code, fingerprint)``."""
        data = state_to_dict(state)
        save_id = new_save_id()
        while self._blobs.exists(save_id):
            save_id = new_save_id()
        self._blobs.write(save_id, dump_json(data, indent=2).encode("utf-8"))
        code = self._codec.make_code(save_id)
        fingerprint = self._codec.state_fingerprint(dump_json(data))
        logger.info("Saved %s as %s (fp %s)", state.player_name, save_id, fingerprint)
        return code, fingerprint

    def load_by_code(self, code: str) -> tuple[GameState | None, str]:
        try:
            save_id = self._codec.verify_code(code)
        except CodeVerificationError:
            logger.warning("Rejected resume code %r", code)
            return None, "Could not verify resume code."
        raw = self._blobs.read(save_id)
        data = parse_json_dict(raw)
        if not data:
            return None, "Resume code valid, but save file not found."
        try:
            state = state_from_dict(data)
        except (KeyError, TypeError, ValueError):
            logger.warning("Save %s could not be decoded", save_id)
            return None, "Could not verify resume code."
        return state, ""
