import re
from dataclasses import dataclass, replace
from typing import Any

from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from passkey_userop.exceptions import DecodeError
from passkey_userop.typing import Address, UserOperationHash

UINT128_MAX = 2**128 - 1
DEFAULT_PAYMASTER_VERIFICATION_GAS_LIMIT = 100_000
DEFAULT_PAYMASTER_POST_OP_GAS_LIMIT = 50_000
PAYMASTER_DATA_OFFSET = 20 + 16 + 16


def _to_uint128_bytes(field_name: str, value: int) -> bytes:
    if not 0 <= value <= UINT128_MAX:
        raise ValueError(f"{field_name} {value} does not fit in 128 bits")
    return value.to_bytes(16, "big")


def pack_gas_limits(verification_gas_limit: int, call_gas_limit: int) -> bytes:
    return (
        _to_uint128_bytes("verificationGasLimit", verification_gas_limit) +
        _to_uint128_bytes("callGasLimit", call_gas_limit)
    )


def unpack_gas_limits(account_gas_limits: bytes) -> tuple[int, int]:
    if len(account_gas_limits) != 32:
        raise DecodeError("accountGasLimits must be 32 bytes")
    return (
        int.from_bytes(account_gas_limits[:16], "big"),
        int.from_bytes(account_gas_limits[16:], "big"),
    )


def pack_gas_fees(max_priority_fee_per_gas: int, max_fee_per_gas: int) -> bytes:
    return (
        _to_uint128_bytes("maxPriorityFeePerGas", max_priority_fee_per_gas) +
        _to_uint128_bytes("maxFeePerGas", max_fee_per_gas)
    )


def unpack_gas_fees(gas_fees: bytes) -> tuple[int, int]:
    if len(gas_fees) != 32:
        raise DecodeError("gasFees must be 32 bytes")
    return (
        int.from_bytes(gas_fees[:16], "big"),
        int.from_bytes(gas_fees[16:], "big"),
    )


def pack_paymaster_and_data(
    paymaster: Address | None,
    paymaster_verification_gas_limit: int = DEFAULT_PAYMASTER_VERIFICATION_GAS_LIMIT,
    paymaster_post_op_gas_limit: int = DEFAULT_PAYMASTER_POST_OP_GAS_LIMIT,
    paymaster_data: bytes = b"",
) -> bytes:
    if not paymaster:
        return b""
    return (
        address_to_bytes(paymaster) +
        _to_uint128_bytes(
            "paymasterVerificationGasLimit", paymaster_verification_gas_limit) +
        _to_uint128_bytes(
            "paymasterPostOpGasLimit", paymaster_post_op_gas_limit) +
        paymaster_data
    )


def unpack_paymaster_and_data(
    paymaster_and_data: bytes
) -> tuple[Address | None, int, int, bytes]:
    if len(paymaster_and_data) == 0:
        return None, 0, 0, b""
    if len(paymaster_and_data) < PAYMASTER_DATA_OFFSET:
        raise DecodeError(
            "paymasterAndData must be empty or at least "
            f"{PAYMASTER_DATA_OFFSET} bytes")
    return (
        Address(to_checksum_address(paymaster_and_data[:20])),
        int.from_bytes(paymaster_and_data[20:36], "big"),
        int.from_bytes(paymaster_and_data[36:52], "big"),
        paymaster_and_data[PAYMASTER_DATA_OFFSET:],
    )


def address_to_bytes(address: str) -> bytes:
    if re.match("^0x[0-9a-fA-F]{40}$", address) is None:
        raise ValueError(f"Invalid address value : {address}")
    return bytes.fromhex(address[2:])


def hex_to_bytes(field_name: str, value: str | None) -> bytes:
    if value is None or value in ("", "0x"):
        return b""
    if not isinstance(value, str) or value[:2] != "0x":
        raise DecodeError(f"Invalid bytes hex value : {value} in field {field_name}")
    try:
        return bytes.fromhex(value[2:])
    except ValueError:
        raise DecodeError(f"Invalid bytes hex value : {value} in field {field_name}")


def hex_to_uint(field_name: str, value: str | int | None) -> int:
    if isinstance(value, int):
        return value
    if value == "0x":
        return 0
    if not isinstance(value, str) or value[:2] != "0x":
        raise DecodeError(f"Invalid uint hex value : {value} in field {field_name}")
    try:
        return int(value, 16)
    except ValueError:
        raise DecodeError(f"Invalid uint hex value : {value} in field {field_name}")


def _hex_or_none(value: bytes | None) -> str | None:
    return None if value is None else "0x" + value.hex()


@dataclass(frozen=True)
class PackedUserOperation:
    sender_address: Address
    nonce: int
    init_code: bytes
    call_data: bytes
    account_gas_limits: bytes
    pre_verification_gas: int
    gas_fees: bytes
    paymaster_and_data: bytes
    signature: bytes = b""

    @property
    def verification_gas_limit(self) -> int:
        return unpack_gas_limits(self.account_gas_limits)[0]

    @property
    def call_gas_limit(self) -> int:
        return unpack_gas_limits(self.account_gas_limits)[1]

    @property
    def max_priority_fee_per_gas(self) -> int:
        return unpack_gas_fees(self.gas_fees)[0]

    @property
    def max_fee_per_gas(self) -> int:
        return unpack_gas_fees(self.gas_fees)[1]

    @property
    def is_signed(self) -> bool:
        return len(self.signature) > 0

    def with_signature(self, signature: bytes) -> "PackedUserOperation":
        return replace(self, signature=signature)

    def to_list(self) -> list[Address | int | bytes]:
        return [
            self.sender_address,
            self.nonce,
            self.init_code,
            self.call_data,
            self.account_gas_limits,
            self.pre_verification_gas,
            self.gas_fees,
            self.paymaster_and_data,
            self.signature,
        ]

    def get_packed_user_operation_json(self) -> dict[str, str]:
        return {
            "sender": self.sender_address,
            "nonce": hex(self.nonce),
            "initCode": "0x" + self.init_code.hex(),
            "callData": "0x" + self.call_data.hex(),
            "accountGasLimits": "0x" + self.account_gas_limits.hex(),
            "preVerificationGas": hex(self.pre_verification_gas),
            "gasFees": "0x" + self.gas_fees.hex(),
            "paymasterAndData": "0x" + self.paymaster_and_data.hex(),
            "signature": "0x" + self.signature.hex(),
        }

    def get_user_operation_json(self) -> dict[str, str | None]:
        """
        EntryPoint v0.7 bundler RPC shape: the packed slots are split back
        into their individual fields.
        """
        verification_gas_limit, call_gas_limit = unpack_gas_limits(
            self.account_gas_limits)
        max_priority_fee_per_gas, max_fee_per_gas = unpack_gas_fees(
            self.gas_fees)
        (
            paymaster,
            paymaster_verification_gas_limit,
            paymaster_post_op_gas_limit,
            paymaster_data,
        ) = unpack_paymaster_and_data(self.paymaster_and_data)

        if len(self.init_code) == 0:
            factory = None
            factory_data = None
        elif len(self.init_code) < 20:
            raise DecodeError(
                f"initCode of {len(self.init_code)} bytes is shorter than "
                "a factory address"
            )
        else:
            factory = to_checksum_address(self.init_code[:20])
            factory_data = _hex_or_none(self.init_code[20:])

        return {
            "sender": self.sender_address,
            "nonce": hex(self.nonce),
            "factory": factory,
            "factoryData": factory_data,
            "callData": "0x" + self.call_data.hex(),
            "callGasLimit": hex(call_gas_limit),
            "verificationGasLimit": hex(verification_gas_limit),
            "preVerificationGas": hex(self.pre_verification_gas),
            "maxFeePerGas": hex(max_fee_per_gas),
            "maxPriorityFeePerGas": hex(max_priority_fee_per_gas),
            "paymaster": paymaster,
            "paymasterVerificationGasLimit":
            None if paymaster is None
            else hex(paymaster_verification_gas_limit),
            "paymasterPostOpGasLimit":
            None if paymaster is None
            else hex(paymaster_post_op_gas_limit),
            "paymasterData":
            None if paymaster is None
            else "0x" + paymaster_data.hex(),
            "signature": "0x" + self.signature.hex(),
        }

    @classmethod
    def from_json(cls, json_dict: dict[str, Any]) -> "PackedUserOperation":
        """Accepts both the packed shape and the v0.7 bundler RPC shape."""
        if "sender" not in json_dict or "nonce" not in json_dict:
            raise DecodeError("UserOperation missing sender or nonce field")

        if "accountGasLimits" in json_dict:
            account_gas_limits = hex_to_bytes(
                "accountGasLimits", json_dict["accountGasLimits"])
            gas_fees = hex_to_bytes("gasFees", json_dict.get("gasFees"))
            init_code = hex_to_bytes("initCode", json_dict.get("initCode"))
            paymaster_and_data = hex_to_bytes(
                "paymasterAndData", json_dict.get("paymasterAndData"))
        else:
            account_gas_limits = pack_gas_limits(
                hex_to_uint(
                    "verificationGasLimit", json_dict.get("verificationGasLimit")),
                hex_to_uint("callGasLimit", json_dict.get("callGasLimit")),
            )
            gas_fees = pack_gas_fees(
                hex_to_uint(
                    "maxPriorityFeePerGas", json_dict.get("maxPriorityFeePerGas")),
                hex_to_uint("maxFeePerGas", json_dict.get("maxFeePerGas")),
            )
            factory = json_dict.get("factory")
            init_code = b"" if factory is None else (
                address_to_bytes(factory) +
                hex_to_bytes("factoryData", json_dict.get("factoryData"))
            )
            paymaster = json_dict.get("paymaster")
            paymaster_and_data = b"" if paymaster is None else pack_paymaster_and_data(
                paymaster,
                hex_to_uint(
                    "paymasterVerificationGasLimit",
                    json_dict.get("paymasterVerificationGasLimit")),
                hex_to_uint(
                    "paymasterPostOpGasLimit",
                    json_dict.get("paymasterPostOpGasLimit")),
                hex_to_bytes("paymasterData", json_dict.get("paymasterData")),
            )

        if len(account_gas_limits) != 32 or len(gas_fees) != 32:
            raise DecodeError("accountGasLimits and gasFees must be 32 bytes")

        return cls(
            sender_address=Address(json_dict["sender"]),
            nonce=hex_to_uint("nonce", json_dict["nonce"]),
            init_code=init_code,
            call_data=hex_to_bytes("callData", json_dict.get("callData")),
            account_gas_limits=account_gas_limits,
            pre_verification_gas=hex_to_uint(
                "preVerificationGas", json_dict.get("preVerificationGas")),
            gas_fees=gas_fees,
            paymaster_and_data=paymaster_and_data,
            signature=hex_to_bytes("signature", json_dict.get("signature")),
        )


def pack_user_operation(user_operation: PackedUserOperation) -> bytes:
    # the signature is never part of the signed payload
    return encode(
        [
            "address",
            "uint256",
            "bytes32",
            "bytes32",
            "bytes32",
            "uint256",
            "bytes32",
            "bytes32",
        ],
        [
            user_operation.sender_address,
            user_operation.nonce,
            keccak(user_operation.init_code),
            keccak(user_operation.call_data),
            user_operation.account_gas_limits,
            user_operation.pre_verification_gas,
            user_operation.gas_fees,
            keccak(user_operation.paymaster_and_data),
        ],
    )


def get_user_operation_hash(
    user_operation: PackedUserOperation, entrypoint_addr: str, chain_id: int
) -> UserOperationHash:
    packed_user_operation = keccak(pack_user_operation(user_operation))

    encoded_user_operation_hash = encode(
        ["(bytes32,address,uint256)"],
        [[packed_user_operation, entrypoint_addr, chain_id]],
    )
    return UserOperationHash(
        "0x" + keccak(encoded_user_operation_hash).hex())


def is_user_operation_hash(user_operation_hash: str) -> bool:
    hash_pattern = "^0x[0-9a-fA-F]{64}$"
    return (
        isinstance(user_operation_hash, str)
        and re.match(hash_pattern, user_operation_hash) is not None
    )
