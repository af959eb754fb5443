"""
Tests for script assembly and parsing.
"""

import pytest

from chancore.bitcoin.script import (
    OP,
    decode_number,
    decode_script,
    disassemble,
    encode_number,
    encode_script,
    parse_multisig,
    push_data,
    script_num,
    small_int_op,
)
from chancore.errors import ConstructionError

KEY_A = bytes.fromhex("023da092f6980e58d2c037173180e9a465476026ee50f96695963e8efe436f54eb")
KEY_B = bytes.fromhex("030e9f7b623d2ccc7c9bd44d66d5ce21ce504c0acf6385a132cec6d3c39fa711c1")


class TestNumbers:
    @pytest.mark.parametrize(
        ("value", "encoded"),
        [(0, ""), (1, "01"), (127, "7f"), (128, "8000"), (144, "9000"), (-1, "81"), (2016, "e007")],
    )
    def test_encode(self, value, encoded):
        assert encode_number(value).hex() == encoded
        assert decode_number(bytes.fromhex(encoded)) == value

    def test_script_num_small(self):
        assert script_num(0) == OP.OP_0
        assert script_num(16) == OP.OP_16
        assert script_num(-1) == OP.OP_1NEGATE
        assert script_num(17) == b"\x11"

    @pytest.mark.parametrize("value", range(17))
    def test_script_num_every_small_int(self, value):
        op = script_num(value)
        assert op == small_int_op(value)
        assert op == (0 if value == 0 else 0x50 + value)
        assert disassemble(encode_script([op])) == str(value)

    def test_small_int_out_of_range(self):
        with pytest.raises(ConstructionError):
            small_int_op(17)


class TestPushData:
    def test_direct(self):
        assert push_data(b"\x01" * 75)[0] == 75

    def test_pushdata1(self):
        assert push_data(b"\x01" * 76)[:2] == bytes([OP.OP_PUSHDATA1, 76])

    def test_pushdata2(self):
        assert push_data(b"\x01" * 256)[:3] == bytes([OP.OP_PUSHDATA2, 0x00, 0x01])


class TestDecode:
    def test_roundtrip(self):
        script = encode_script([OP.OP_2, KEY_A, KEY_B, OP.OP_2, OP.OP_CHECKMULTISIG])
        assert decode_script(script) == [0x52, KEY_A, KEY_B, 0x52, 0xAE]

    def test_truncated_push(self):
        with pytest.raises(ConstructionError):
            decode_script(b"\x05\x01\x02")

    def test_disassemble(self):
        script = encode_script([OP.OP_IF, KEY_A, OP.OP_ELSE, script_num(144), OP.OP_ENDIF])
        assert disassemble(script) == f"OP_IF {KEY_A.hex()} OP_ELSE 9000 OP_ENDIF"


class TestParseMultisig:
    def test_two_of_two(self):
        script = encode_script([OP.OP_2, KEY_A, KEY_B, OP.OP_2, OP.OP_CHECKMULTISIG])
        assert parse_multisig(script) == (2, [KEY_A, KEY_B])

    def test_not_multisig(self):
        with pytest.raises(ConstructionError):
            parse_multisig(encode_script([KEY_A, OP.OP_CHECKSIG]))

    def test_wrong_key_count(self):
        script = encode_script([OP.OP_2, KEY_A, OP.OP_2, OP.OP_CHECKMULTISIG])
        with pytest.raises(ConstructionError):
            parse_multisig(script)
