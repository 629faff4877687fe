from typing import Any

from eth_abi import decode
from eth_abi.exceptions import DecodingError

from passkey_userop.exceptions import ChainReadError, RpcTransportError
from passkey_userop.utils.eth_client_utils import (
    EthClient, eth_call, get_rpc_error_message)


async def read_contract(
    client: EthClient,
    to: str,
    call_data: str,
    output_types: list[str],
    description: str,
) -> tuple[Any, ...]:
    """
    eth_call + ABI decode, the one decoding path for every contract read.
    Any failure surfaces as ChainReadError, never as a default value.
    """
    try:
        res = await eth_call(client, to, call_data)
    except RpcTransportError as excp:
        raise ChainReadError(f"{description} failed: {excp.message}")

    if "result" not in res:
        raise ChainReadError(
            f"{description} failed: {get_rpc_error_message(res)}")

    raw_result = res["result"]
    if raw_result in (None, "0x"):
        raise ChainReadError(f"{description} returned no data from {to}")
    try:
        return decode(output_types, bytes.fromhex(raw_result[2:]))
    except (DecodingError, ValueError) as excp:
        raise ChainReadError(f"{description} returned undecodable data: {excp}")


async def get_code(client: EthClient, address: str) -> str:
    try:
        res = await client.send_rpc_request("eth_getCode", [address, "latest"])
    except RpcTransportError as excp:
        raise ChainReadError(f"eth_getCode failed: {excp.message}")
    if "result" not in res:
        raise ChainReadError(
            f"eth_getCode failed: {get_rpc_error_message(res)}")
    return res["result"]
