from __future__ import annotations

import hashlib
import hmac
import secrets

from .errors import CodeVerificationError

SAVE_TAG = "BP"
PARTY_TAG = "PT"
SAVE_ID_LENGTH = 10
PARTY_ID_LENGTH = 12
SIGNATURE_LENGTH = 8
GROUP_WIDTH = 4
FINGERPRINT_LENGTH = 8


def new_save_id() -> str:
    return secrets.token_hex(SAVE_ID_LENGTH // 2).upper()


def new_party_id() -> str:
    return secrets.token_hex(PARTY_ID_LENGTH // 2).upper()


class SaveCodec:
    """Signs opaque ids into short shareable codes such as ``BP-1A2B-...``.

    The signature is a truncated HMAC-SHA256 of the id, so a code proves the
    id was minted with the same secret without any server-side lookup.
    """

    def __init__(self, secret: str):
        self._secret = secret.encode("utf-8")

    def _signature(self, doc_id: str) -> str:
        digest = hmac.new(self._secret, doc_id.encode("utf-8"), hashlib.sha256).hexdigest()
        return digest.upper()[:SIGNATURE_LENGTH]

    def _make(self, tag: str, doc_id: str) -> str:
        raw = doc_id + self._signature(doc_id)
        groups = [raw[i : i + GROUP_WIDTH] for i in range(0, len(raw), GROUP_WIDTH)]
        return f"{tag}-" + "-".join(groups)

    def _verify(self, tag: str, id_length: int, code: str) -> str:
        compact = (code or "").strip().upper()
        prefix = f"{tag}-"
        if compact.startswith(prefix):
            compact = compact[len(prefix):]
        compact = compact.replace("-", "")
        if len(compact) != id_length + SIGNATURE_LENGTH or not (compact.isascii() and compact.isalnum()):
            raise CodeVerificationError("Bad code")
        doc_id = compact[:id_length]
        signature = compact[id_length:]
        if not hmac.compare_digest(signature, self._signature(doc_id)):
            raise CodeVerificationError("Signature mismatch")
        return doc_id

    def make_code(self, save_id: str) -> str:
        return self._make(SAVE_TAG, save_id)

    def verify_code(self, code: str) -> str:
        return self._verify(SAVE_TAG, SAVE_ID_LENGTH, code)

    def make_party_code(self, party_id: str) -> str:
        return self._make(PARTY_TAG, party_id)

    def verify_party_code(self, code: str) -> str:
        return self._verify(PARTY_TAG, PARTY_ID_LENGTH, code)

    @staticmethod
    def state_fingerprint(state_json: str) -> str:
        """Short digest of a serialized state, for display only."""
        return hashlib.sha256(state_json.encode("utf-8")).hexdigest().upper()[:FINGERPRINT_LENGTH]
