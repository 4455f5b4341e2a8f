from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable

from ..core.codec import SaveCodec, new_party_id
from ..core.errors import CodeVerificationError
from ..core.normalize import dump_json, parse_json_dict
from ..core.party import DEFAULT_LORE_LIMIT, DEFAULT_PARTY_CAPACITY, append_lore, can_register, register_member
from ..core.ports import BlobStore
from ..core.serialization import party_from_dict, party_to_dict
from ..core.types import PartyState

logger = logging.getLogger(__name__)

# Serializes party document reads and writes in this process. Turns reload
# and write back separately; only `PartyStore.update` holds it across both.
_PARTY_LOCK = threading.RLock()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PartyStore:
    """Shared party documents, last writer wins.

    Sessions reload the document at the start of each turn and write the
    whole document back at the end; no merge is attempted.
    """

    def __init__(
        self,
        blobs: BlobStore,
        codec: SaveCodec,
        clock: Callable[[], datetime] | None = None,
    ):
        self._blobs = blobs
        self._codec = codec
        self._clock = clock or _utcnow

    def party_code(self, party_id: str) -> str:
        return self._codec.make_party_code(party_id)

    def create_party(self) -> tuple[PartyState, str]:
        party = PartyState(party_id=new_party_id(), created_at=self._clock())
        self.save(party)
        code = self.party_code(party.party_id)
        logger.info("Created party %s", party.party_id)
        return party, code

    def load(self, party_id: str) -> PartyState | None:
        with _PARTY_LOCK:
            raw = self._blobs.read(party_id)
        if raw is None:
            return None
        data = parse_json_dict(raw)
        try:
            return party_from_dict(data)
        except (KeyError, TypeError, ValueError):
            logger.warning("Party document %s is unreadable", party_id)
            return None

    def try_load_by_code(self, code: str) -> tuple[PartyState | None, str]:
        try:
            party_id = self._codec.verify_party_code(code)
        except CodeVerificationError:
            logger.warning("Rejected party code %r", code)
            return None, "Could not verify party code."
        party = self.load(party_id)
        if party is None:
            return None, "Party code verified, but no party file was found."
        return party, "Joined party."

    def save(self, party: PartyState) -> None:
        payload = dump_json(party_to_dict(party), indent=2).encode("utf-8")
        with _PARTY_LOCK:
            self._blobs.write(party.party_id, payload)

    def update(self, party_id: str, mutate: Callable[[PartyState], bool]) -> tuple[PartyState | None, bool]:
        """Load, apply ``mutate`` and save as one step under the party lock.

        The document is written only when ``mutate`` returns true. Returns the
        latest party (None when missing) and whether it was written.
        """
        with _PARTY_LOCK:
            party = self.load(party_id)
            if party is None or not mutate(party):
                return party, False
            self.save(party)
        return party, True


__all__ = [
    "DEFAULT_LORE_LIMIT",
    "DEFAULT_PARTY_CAPACITY",
    "PartyStore",
    "append_lore",
    "can_register",
    "register_member",
]
