from functools import cache
from typing import Any

from eth_abi import encode
from eth_utils import keccak

PACKED_USER_OPERATION_TUPLE = \
    "(address,uint256,bytes,bytes,bytes32,uint256,bytes32,bytes,bytes)"


@cache
def function_selector(signature: str) -> bytes:
    return keccak(text=signature)[:4]


def encode_function_call(
    signature: str, types: list[str], args: list[Any]
) -> bytes:
    return function_selector(signature) + encode(types, args)


def encode_execute_calldata(target: str, value: int, data: bytes) -> bytes:
    return encode_function_call(
        "execute(address,uint256,bytes)",
        ["address", "uint256", "bytes"],
        [target, value, data],
    )


def encode_execute_batch_calldata(
    targets: list[str], values: list[int], datas: list[bytes]
) -> bytes:
    return encode_function_call(
        "executeBatch(address[],uint256[],bytes[])",
        ["address[]", "uint256[]", "bytes[]"],
        [targets, values, datas],
    )


def encode_erc20_approve_calldata(spender: str, amount: int) -> bytes:
    return encode_function_call(
        "approve(address,uint256)",
        ["address", "uint256"],
        [spender, amount],
    )


def encode_pool_invest_calldata(pool_id: int, amount: int) -> bytes:
    return encode_function_call(
        "invest(uint256,uint256)",
        ["uint256", "uint256"],
        [pool_id, amount],
    )


def encode_factory_calldata(
    function_name: str,
    public_key_x: bytes,
    public_key_y: bytes,
    credential_id: bytes,
) -> str:
    # getAddress / walletExists / getInitCode / createWallet share one shape
    call_data = encode_function_call(
        f"{function_name}(bytes32,bytes32,bytes32)",
        ["bytes32", "bytes32", "bytes32"],
        [public_key_x, public_key_y, credential_id],
    )
    return "0x" + call_data.hex()


def encode_get_nonce_calldata(sender: str, key: int) -> str:
    call_data = encode_function_call(
        "getNonce(address,uint192)",
        ["address", "uint192"],
        [sender, key],
    )
    return "0x" + call_data.hex()


def encode_balance_of_calldata(account: str) -> str:
    call_data = encode_function_call(
        "balanceOf(address)", ["address"], [account])
    return "0x" + call_data.hex()


def encode_get_user_op_hash_calldata(user_operation_list: list[Any]) -> str:
    call_data = encode_function_call(
        f"getUserOpHash({PACKED_USER_OPERATION_TUPLE})",
        [PACKED_USER_OPERATION_TUPLE],
        [user_operation_list],
    )
    return "0x" + call_data.hex()


def encode_handleops_calldata_v7(
        user_operations_list: list[list[Any]], beneficiary: str) -> str:
    params = encode(
        [PACKED_USER_OPERATION_TUPLE + "[]", "address"],
        [user_operations_list, beneficiary],
    )
    call_data = function_selector(
        f"handleOps({PACKED_USER_OPERATION_TUPLE}[],address)") + params
    return "0x" + call_data.hex()
