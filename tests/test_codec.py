from __future__ import annotations

import re

import pytest

from priory_engine.core.codec import PARTY_ID_LENGTH, SAVE_ID_LENGTH, SaveCodec, new_party_id, new_save_id
from priory_engine.core.errors import CodeVerificationError


def test_save_code_shape_and_round_trip(codec):
    save_id = new_save_id()
    code = codec.make_code(save_id)
    assert re.fullmatch(r"BP-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{2}", code)
    assert codec.verify_code(code) == save_id
    assert codec.verify_code(f"  {code.lower()} ") == save_id
    # the tag and dashes are optional on input
    assert codec.verify_code(code[3:].replace("-", "")) == save_id


def test_party_code_round_trip(codec):
    party_id = new_party_id()
    code = codec.make_party_code(party_id)
    assert code.startswith("PT-")
    assert len(code.split("-")) == 6
    assert codec.verify_party_code(code) == party_id


def test_ids_have_fixed_lengths():
    assert len(new_save_id()) == SAVE_ID_LENGTH
    assert len(new_party_id()) == PARTY_ID_LENGTH
    assert new_save_id() != new_save_id()


def test_tampered_code_is_rejected(codec):
    code = codec.make_code("0123456789")
    tampered = "BP-1" + code[4:]
    with pytest.raises(CodeVerificationError):
        codec.verify_code(tampered)


def test_code_kinds_do_not_mix(codec):
    with pytest.raises(CodeVerificationError):
        codec.verify_code(codec.make_party_code(new_party_id()))
    with pytest.raises(CodeVerificationError):
        codec.verify_party_code(codec.make_code(new_save_id()))


def test_other_secret_is_rejected(codec):
    code = SaveCodec("another-secret").make_code("0123456789")
    with pytest.raises(CodeVerificationError):
        codec.verify_code(code)


@pytest.mark.parametrize("code", ["", None, "BP-", "BP-ÄÄÄÄ-ÄÄÄÄ-ÄÄÄÄ-ÄÄÄÄ-ÄÄ", "not a code at all"])
def test_malformed_codes(codec, code):
    with pytest.raises(CodeVerificationError):
        codec.verify_code(code)


def test_state_fingerprint():
    fp = SaveCodec.state_fingerprint('{"coin":3}')
    assert re.fullmatch(r"[0-9A-F]{8}", fp)
    assert fp == SaveCodec.state_fingerprint('{"coin":3}')
    assert fp != SaveCodec.state_fingerprint('{"coin":4}')
