from functools import cache

from eth_abi import decode
from eth_abi.exceptions import DecodingError

ERROR_STRING_SELECTOR = "0x08c379a0"  # Error(string)
PANIC_SELECTOR = "0x4e487b71"  # Panic(uint256)
FAILED_OP_SELECTOR = "0x220266b6"  # FailedOp(uint256,string)
FAILED_OP_WITH_REVERT_SELECTOR = "0x65c8fd4d"  # FailedOpWithRevert(uint256,string,bytes)


@cache
def decode_failed_op_event(solidity_error_params: str) -> tuple[int, str]:
    failed_op_params_res = decode(
        ["uint256", "string"], bytes.fromhex(solidity_error_params)
    )
    operation_index = failed_op_params_res[0]
    reason = failed_op_params_res[1]

    return operation_index, reason


@cache
def decode_failed_op_with_revert_event(
        solidity_error_params: str) -> tuple[int, str, bytes]:
    failed_op_params_res = decode(
        ["uint256", "string", "bytes"], bytes.fromhex(solidity_error_params)
    )
    operation_index = failed_op_params_res[0]
    reason = failed_op_params_res[1]
    inner = failed_op_params_res[2]

    return operation_index, reason, inner


def decode_revert_reason(revert_data: str | None) -> str:
    """
    Human readable reason for EntryPoint/solidity revert data.
    Unknown selectors are returned as the raw hex.
    """
    if revert_data is None or revert_data in ("", "0x"):
        return "execution reverted without reason"

    if not revert_data.startswith("0x"):
        revert_data = "0x" + revert_data
    selector = revert_data[:10].lower()
    error_params = revert_data[10:]
    try:
        if selector == FAILED_OP_SELECTOR:
            _, reason = decode_failed_op_event(error_params)
            return reason
        elif selector == FAILED_OP_WITH_REVERT_SELECTOR:
            _, reason, inner = decode_failed_op_with_revert_event(error_params)
            inner_reason = decode_revert_reason("0x" + inner.hex()) \
                if len(inner) >= 4 else "0x" + inner.hex()
            return f"{reason} {inner_reason}"
        elif selector == ERROR_STRING_SELECTOR:
            return decode(["string"], bytes.fromhex(error_params))[0]
        elif selector == PANIC_SELECTOR:
            panic_code = decode(["uint256"], bytes.fromhex(error_params))[0]
            return f"panic code {hex(panic_code)}"
    except (DecodingError, ValueError):
        return revert_data
    return revert_data
