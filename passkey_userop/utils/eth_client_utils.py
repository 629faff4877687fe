import asyncio
import itertools
import json
import logging
from typing import Any

from aiohttp import ClientError, ClientSession, ClientTimeout

from passkey_userop.exceptions import RpcTransportError

DEFAULT_RPC_TIMEOUT_SECONDS = 30.0

_request_ids = itertools.count(1)


async def send_rpc_request_to_eth_client(
    node_url: str,
    method: str,
    params=None,
    timeout: float = DEFAULT_RPC_TIMEOUT_SECONDS,
) -> dict[str, Any]:
    """
    Single JSON-RPC round trip, bounded by `timeout`.
    The decoded response is returned as is, callers inspect "result"/"error".
    Transport failures raise RpcTransportError, there is no retry.
    """
    json_request = {
        "jsonrpc": "2.0",
        "id": next(_request_ids),
        "method": method,
        "params": params if params is not None else [],
    }
    headers = {
        "content-type": "application/json",
        "connection": "keep-alive"
    }
    try:
        async with ClientSession(timeout=ClientTimeout(total=timeout)) as session:
            async with session.post(
                node_url,
                json=json_request,
                headers=headers
            ) as response:
                resp = await response.read()
    except asyncio.TimeoutError:
        logging.error(f"{method} to {node_url} timed out after {timeout}s")
        raise RpcTransportError(
            f"{method} timed out after {timeout} seconds")
    except ClientError as excp:
        logging.error(f"{method} to {node_url} failed. error: {str(excp)}")
        raise RpcTransportError(f"{method} failed: {str(excp)}")

    try:
        json_result = json.loads(resp)
    except json.decoder.JSONDecodeError:
        logging.error(f"Invalid json response from {node_url} for {method}")
        raise RpcTransportError(f"Invalid json response for {method}")

    if not isinstance(json_result, dict):
        raise RpcTransportError(f"Unexpected response shape for {method}")
    return json_result


class EthClient:
    """JSON-RPC handle for one endpoint (an Ethereum node or a bundler)."""

    node_url: str
    timeout: float

    def __init__(
        self, node_url: str, timeout: float = DEFAULT_RPC_TIMEOUT_SECONDS
    ) -> None:
        self.node_url = node_url
        self.timeout = timeout

    async def send_rpc_request(
        self, method: str, params=None
    ) -> dict[str, Any]:
        return await send_rpc_request_to_eth_client(
            self.node_url, method, params, self.timeout)


def get_rpc_error_message(json_result: dict[str, Any]) -> str:
    error = json_result.get("error")
    if isinstance(error, dict):
        return str(error.get("message", ""))
    return str(error)


async def eth_call(
    client: EthClient,
    to: str,
    data: str,
    sender: str | None = None,
    block: str = "latest",
) -> dict[str, Any]:
    call_object = {"to": to, "data": data}
    if sender is not None:
        call_object["from"] = sender
    return await client.send_rpc_request("eth_call", [call_object, block])


async def get_latest_block_info(client: EthClient) -> tuple[int, int | None]:
    raw_res = await client.send_rpc_request(
        "eth_getBlockByNumber", ["latest", False])
    latest_block = raw_res.get("result")
    if latest_block is None:
        raise RpcTransportError(
            "eth_getBlockByNumber failed: " + get_rpc_error_message(raw_res))

    latest_block_number = int(latest_block["number"], 16)
    if latest_block.get("baseFeePerGas") is not None:
        latest_block_basefee = int(latest_block["baseFeePerGas"], 16)
    else:  # for chains without EIP-1559
        latest_block_basefee = None

    return latest_block_number, latest_block_basefee
