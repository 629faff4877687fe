import pytest

from fakes import CHAIN_ID, ENTRYPOINT, PAYMASTER
from passkey_userop.exceptions import DecodeError
from passkey_userop.typing import Address
from passkey_userop.user_operation.user_operation import (
    UINT128_MAX, PackedUserOperation, get_user_operation_hash,
    is_user_operation_hash, pack_gas_fees, pack_gas_limits,
    pack_paymaster_and_data, unpack_gas_fees, unpack_gas_limits,
    unpack_paymaster_and_data)

SENDER = Address("0x1306b01bC3e4AD202612D3843387e94737673F53")


def make_user_operation(**overrides) -> PackedUserOperation:
    fields = dict(
        sender_address=SENDER,
        nonce=7,
        init_code=b"",
        call_data=bytes.fromhex("b61d27f6") + b"\x00" * 96,
        account_gas_limits=pack_gas_limits(500_000, 400_000),
        pre_verification_gas=100_000,
        gas_fees=pack_gas_fees(2 * 10**9, 30 * 10**9),
        paymaster_and_data=b"",
    )
    fields.update(overrides)
    return PackedUserOperation(**fields)


@pytest.mark.parametrize(
    "high,low",
    [(0, 0), (500_000, 400_000), (1, UINT128_MAX), (UINT128_MAX, 1)],
)
def test_gas_slots_round_trip(high, low):
    assert unpack_gas_limits(pack_gas_limits(high, low)) == (high, low)
    assert unpack_gas_fees(pack_gas_fees(high, low)) == (high, low)


def test_pack_gas_limits_layout():
    packed = pack_gas_limits(1, 2)
    assert len(packed) == 32
    assert int.from_bytes(packed, "big") == (1 << 128) | 2


def test_pack_gas_limits_rejects_values_over_128_bits():
    with pytest.raises(ValueError):
        pack_gas_limits(UINT128_MAX + 1, 0)


def test_unpack_rejects_wrong_length():
    with pytest.raises(DecodeError):
        unpack_gas_fees(b"\x00" * 31)


def test_paymaster_and_data_empty_without_paymaster():
    assert pack_paymaster_and_data(None) == b""
    assert unpack_paymaster_and_data(b"") == (None, 0, 0, b"")


def test_paymaster_and_data_round_trip():
    packed = pack_paymaster_and_data(PAYMASTER, 120_000, 60_000, b"\xca\xfe")
    assert len(packed) == 20 + 16 + 16 + 2
    assert unpack_paymaster_and_data(packed) == (
        PAYMASTER, 120_000, 60_000, b"\xca\xfe")


def test_paymaster_and_data_defaults():
    _, verification_gas, post_op_gas, data = unpack_paymaster_and_data(
        pack_paymaster_and_data(PAYMASTER))
    assert (verification_gas, post_op_gas, data) == (100_000, 50_000, b"")


def test_hash_ignores_signature():
    user_operation = make_user_operation()
    unsigned_hash = get_user_operation_hash(user_operation, ENTRYPOINT, CHAIN_ID)
    signed_hash = get_user_operation_hash(
        user_operation.with_signature(b"\x01" * 400), ENTRYPOINT, CHAIN_ID)
    assert unsigned_hash == signed_hash
    assert is_user_operation_hash(unsigned_hash)


@pytest.mark.parametrize(
    "override",
    [
        {"nonce": 8},
        {"init_code": b"\x01"},
        {"call_data": b"\x02"},
        {"account_gas_limits": pack_gas_limits(500_001, 400_000)},
        {"pre_verification_gas": 100_001},
        {"gas_fees": pack_gas_fees(2 * 10**9, 31 * 10**9)},
        {"paymaster_and_data": pack_paymaster_and_data(PAYMASTER)},
        {"sender_address": Address("0x" + "11" * 20)},
    ],
)
def test_hash_changes_with_every_other_field(override):
    base_hash = get_user_operation_hash(
        make_user_operation(), ENTRYPOINT, CHAIN_ID)
    changed_hash = get_user_operation_hash(
        make_user_operation(**override), ENTRYPOINT, CHAIN_ID)
    assert base_hash != changed_hash


def test_hash_binds_entrypoint_and_chain():
    user_operation = make_user_operation()
    base_hash = get_user_operation_hash(user_operation, ENTRYPOINT, CHAIN_ID)
    assert base_hash != get_user_operation_hash(
        user_operation, ENTRYPOINT, CHAIN_ID + 1)
    assert base_hash != get_user_operation_hash(
        user_operation, "0x" + "22" * 20, CHAIN_ID)


def test_bundler_json_shape_splits_packed_fields():
    user_operation = make_user_operation(
        init_code=bytes.fromhex("fa" * 20) + b"\xab\xcd",
        paymaster_and_data=pack_paymaster_and_data(PAYMASTER),
        signature=b"\x05",
    )
    json_dict = user_operation.get_user_operation_json()
    assert json_dict["verificationGasLimit"] == hex(500_000)
    assert json_dict["callGasLimit"] == hex(400_000)
    assert json_dict["maxFeePerGas"] == hex(30 * 10**9)
    assert json_dict["maxPriorityFeePerGas"] == hex(2 * 10**9)
    assert json_dict["factory"].lower() == "0x" + "fa" * 20
    assert json_dict["factoryData"] == "0xabcd"
    assert json_dict["paymaster"] == PAYMASTER
    assert json_dict["paymasterVerificationGasLimit"] == hex(100_000)
    assert json_dict["signature"] == "0x05"
    assert PackedUserOperation.from_json(json_dict) == user_operation


def test_bundler_json_shape_without_factory_or_paymaster():
    json_dict = make_user_operation().get_user_operation_json()
    assert json_dict["factory"] is None
    assert json_dict["paymaster"] is None
    assert json_dict["paymasterData"] is None


def test_bundler_json_shape_rejects_init_code_without_factory_address():
    user_operation = make_user_operation(init_code=b"\xfa" * 19)
    with pytest.raises(DecodeError):
        user_operation.get_user_operation_json()


def test_packed_json_round_trip():
    user_operation = make_user_operation(signature=b"\x09" * 10)
    json_dict = user_operation.get_packed_user_operation_json()
    assert json_dict["paymasterAndData"] == "0x"
    assert PackedUserOperation.from_json(json_dict) == user_operation


def test_from_json_rejects_bad_hex():
    json_dict = make_user_operation().get_packed_user_operation_json()
    json_dict["callData"] = "0xzz"
    with pytest.raises(DecodeError):
        PackedUserOperation.from_json(json_dict)
