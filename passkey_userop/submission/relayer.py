import asyncio
import logging
from typing import Any

from eth_account import Account

from passkey_userop.exceptions import (
    ChainReadError, ConfirmationTimeout, RpcTransportError)
from passkey_userop.gas.gas_manager import GasManager
from passkey_userop.typing import Address, TransactionHash
from passkey_userop.utils.eth_client_utils import EthClient, get_rpc_error_message

DEFAULT_DIRECT_GAS_LIMIT = 1_000_000
DEFAULT_CONFIRMATIONS = 2
DEFAULT_CONFIRMATION_TIMEOUT_SECONDS = 120.0
DEFAULT_RECEIPT_POLL_INTERVAL_SECONDS = 2.0


class Relayer:
    """
    A funded EOA that pays for direct EntryPoint calls.
    Its account nonce is shared by every direct submission, so sends are
    serialized behind one lock.
    """

    client: EthClient
    gas_manager: GasManager
    address: Address
    private_key: str
    chain_id: int
    gas_limit: int

    def __init__(
        self,
        client: EthClient,
        gas_manager: GasManager,
        private_key: str,
        chain_id: int,
        gas_limit: int = DEFAULT_DIRECT_GAS_LIMIT,
    ) -> None:
        self.client = client
        self.gas_manager = gas_manager
        self.private_key = private_key
        self.address = Address(Account.from_key(private_key).address)
        self.chain_id = chain_id
        self.gas_limit = gas_limit
        self._lock = asyncio.Lock()

    async def _get_transaction_count(self) -> int:
        res = await self.client.send_rpc_request(
            "eth_getTransactionCount", [self.address, "pending"])
        if "result" not in res:
            raise ChainReadError(
                "eth_getTransactionCount failed: " + get_rpc_error_message(res))
        return int(res["result"], 16)

    async def send_transaction(
        self, to: Address, call_data: str
    ) -> TransactionHash:
        async with self._lock:
            nonce, fee_data = await asyncio.gather(
                self._get_transaction_count(),
                self.gas_manager.get_fee_data(),
            )
            max_priority_fee_per_gas = min(
                fee_data.max_priority_fee_per_gas, fee_data.max_fee_per_gas)
            txnDict = {
                "chainId": self.chain_id,
                "from": self.address,
                "to": to,
                "nonce": nonce,
                "gas": self.gas_limit,
                "value": 0,
                "data": call_data,
                "maxFeePerGas": fee_data.max_fee_per_gas,
                "maxPriorityFeePerGas": max_priority_fee_per_gas,
            }
            sign_store_txn = Account.sign_transaction(
                txnDict, private_key=self.private_key
            )
            raw_transaction = "0x" + bytes(sign_store_txn.raw_transaction).hex()
            local_transaction_hash = TransactionHash(
                "0x" + bytes(sign_store_txn.hash).hex())

            try:
                result = await self.client.send_rpc_request(
                    "eth_sendRawTransaction", [raw_transaction])
            except RpcTransportError as excp:
                # the node may have accepted the transaction before the
                # connection failed, so it is tracked by its local hash
                logging.warning(
                    f"Relayer transaction {local_transaction_hash} may not "
                    f"have been broadcast: {excp.message}"
                )
                return local_transaction_hash
            if "error" in result:
                logging.error(
                    "Failed to send relayer transaction." + str(result["error"]))
                raise ChainReadError(
                    "eth_sendRawTransaction failed: "
                    + get_rpc_error_message(result))

        transaction_hash = TransactionHash(result["result"])
        logging.info(
            f"Relayer {self.address} sent transaction {transaction_hash} "
            f"nonce: {nonce}"
        )
        return transaction_hash

    async def get_transaction_receipt(
        self, transaction_hash: TransactionHash
    ) -> dict[str, Any] | None:
        res = await self.client.send_rpc_request(
            "eth_getTransactionReceipt", [transaction_hash])
        if "error" in res:
            raise ChainReadError(
                "eth_getTransactionReceipt failed: " + get_rpc_error_message(res))
        return res.get("result")

    async def _get_block_number(self) -> int:
        res = await self.client.send_rpc_request("eth_blockNumber", [])
        if "result" not in res:
            raise ChainReadError(
                "eth_blockNumber failed: " + get_rpc_error_message(res))
        return int(res["result"], 16)

    async def _poll_receipt(
        self,
        transaction_hash: TransactionHash,
        confirmations: int,
        poll_interval: float,
    ) -> dict[str, Any]:
        while True:
            receipt = await self.get_transaction_receipt(transaction_hash)
            if receipt is not None and receipt.get("blockNumber") is not None:
                included_at = int(receipt["blockNumber"], 16)
                latest_block = await self._get_block_number()
                if latest_block - included_at + 1 >= confirmations:
                    return receipt
            await asyncio.sleep(poll_interval)

    async def wait_for_receipt(
        self,
        transaction_hash: TransactionHash,
        confirmations: int = DEFAULT_CONFIRMATIONS,
        timeout: float = DEFAULT_CONFIRMATION_TIMEOUT_SECONDS,
        poll_interval: float = DEFAULT_RECEIPT_POLL_INTERVAL_SECONDS,
    ) -> dict[str, Any]:
        try:
            return await asyncio.wait_for(
                self._poll_receipt(transaction_hash, confirmations, poll_interval),
                timeout,
            )
        except asyncio.TimeoutError:
            logging.warning(
                f"Transaction {transaction_hash} not confirmed within {timeout}s")
            raise ConfirmationTimeout(
                f"Transaction {transaction_hash} was not confirmed within "
                f"{timeout} seconds",
                transaction_hash,
            )
        except (RpcTransportError, ChainReadError) as excp:
            logging.warning(
                f"Lost track of transaction {transaction_hash}: {excp.message}")
            raise ConfirmationTimeout(
                f"Transaction {transaction_hash} confirmation unknown: "
                f"{excp.message}",
                transaction_hash,
            )
