import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from passkey_userop.entrypoint.entrypoint import EntryPointClient
from passkey_userop.exceptions import (
    BundlerRejection, ConfigurationError, PipelineExceptionCode,
    PreconditionError, RpcTransportError, SimulationRevertError,
    UserOperationPipelineException)
from passkey_userop.mempool.pending_operation_store import PendingOperationStore
from passkey_userop.metrics.metrics import (
    BUNDLER_REJECTIONS, CONFIRMATION_TIME, SIMULATION_REVERTS, SUBMISSIONS)
from passkey_userop.submission.relayer import (
    DEFAULT_CONFIRMATION_TIMEOUT_SECONDS, DEFAULT_CONFIRMATIONS,
    DEFAULT_RECEIPT_POLL_INTERVAL_SECONDS, Relayer)
from passkey_userop.typing import TransactionHash, UserOperationHash
from passkey_userop.user_operation.user_operation import (
    PackedUserOperation, get_user_operation_hash, is_user_operation_hash)
from passkey_userop.utils.decode import decode_revert_reason
from passkey_userop.utils.eth_client_utils import (
    EthClient, eth_call, get_rpc_error_message)


class OperationStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REJECTED = "rejected"


class SubmissionPath(Enum):
    BUNDLER = "bundler"
    DIRECT = "direct"


@dataclass(frozen=True)
class SubmissionResult:
    status: OperationStatus
    path: SubmissionPath | None
    user_operation_hash: UserOperationHash | None = None
    transaction_hash: TransactionHash | None = None
    error_code: PipelineExceptionCode | None = None
    error_message: str | None = None

    @property
    def is_final(self) -> bool:
        return self.status != OperationStatus.PENDING

    @classmethod
    def rejected(
        cls,
        path: SubmissionPath | None,
        excp: UserOperationPipelineException,
        user_operation_hash: UserOperationHash | None = None,
    ) -> "SubmissionResult":
        return cls(
            OperationStatus.REJECTED,
            path,
            user_operation_hash=user_operation_hash,
            error_code=excp.exception_code,
            error_message=excp.message,
        )


def _get_revert_data(json_result: dict[str, Any]) -> str | None:
    error = json_result.get("error")
    if not isinstance(error, dict):
        return None
    data = error.get("data")
    # some nodes nest the revert data one level deeper
    if isinstance(data, dict):
        data = data.get("data")
    return data if isinstance(data, str) else None


class SubmissionGateway:
    """
    Delivers signed UserOperations. A gateway with a bundler client sends
    through the bundler, a gateway with only a relayer calls handleOps
    itself. The two paths never fall through to each other.
    """

    entrypoint_client: EntryPointClient
    bundler_client: EthClient | None
    relayer: Relayer | None
    pending_operation_store: PendingOperationStore | None

    def __init__(
        self,
        entrypoint_client: EntryPointClient,
        bundler_client: EthClient | None = None,
        relayer: Relayer | None = None,
        pending_operation_store: PendingOperationStore | None = None,
        confirmations: int = DEFAULT_CONFIRMATIONS,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT_SECONDS,
        poll_interval: float = DEFAULT_RECEIPT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self.entrypoint_client = entrypoint_client
        self.bundler_client = bundler_client
        self.relayer = relayer
        self.pending_operation_store = pending_operation_store
        self.confirmations = confirmations
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval

    @property
    def path(self) -> SubmissionPath | None:
        if self.bundler_client is not None:
            return SubmissionPath.BUNDLER
        if self.relayer is not None:
            return SubmissionPath.DIRECT
        return None

    @property
    def entrypoint(self) -> str:
        return self.entrypoint_client.entrypoint

    async def submit(self, user_operation: PackedUserOperation) -> SubmissionResult:
        """
        Sends through the configured path and reports a tagged outcome.
        Expected failures become a `rejected` result, anything else raises.
        """
        path = self.path
        try:
            if path == SubmissionPath.BUNDLER:
                return await self.send_to_bundler(user_operation)
            elif path == SubmissionPath.DIRECT:
                return await self.send_direct(user_operation)
            raise ConfigurationError(
                "Neither a bundler url nor a relayer account is configured")
        except UserOperationPipelineException as excp:
            logging.error(f"UserOperation submission rejected: {excp.message}")
            SUBMISSIONS.labels(
                path.value if path else "none",
                OperationStatus.REJECTED.value,
            ).inc()
            return SubmissionResult.rejected(path, excp)

    async def send_to_bundler(
        self, user_operation: PackedUserOperation
    ) -> SubmissionResult:
        if not user_operation.is_signed:
            raise PreconditionError("UserOperation is not signed")
        if self.bundler_client is None:
            raise ConfigurationError("Bundler url is not configured")

        res = await self.bundler_client.send_rpc_request(
            "eth_sendUserOperation",
            [user_operation.get_user_operation_json(), self.entrypoint],
        )
        if "error" in res:
            error = res["error"]
            message = get_rpc_error_message(res)
            BUNDLER_REJECTIONS.inc()
            logging.error(
                f"Bundler rejected UserOperation from "
                f"{user_operation.sender_address}: {message}"
            )
            raise BundlerRejection(
                message,
                error.get("code") if isinstance(error, dict) else None,
            )

        user_operation_hash = res.get("result")
        if not is_user_operation_hash(user_operation_hash):
            raise BundlerRejection(
                f"Bundler returned an invalid UserOperation hash: {user_operation_hash}")
        user_operation_hash = UserOperationHash(user_operation_hash)

        if self.pending_operation_store is not None:
            await self.pending_operation_store.put(
                user_operation_hash, user_operation)

        SUBMISSIONS.labels(
            SubmissionPath.BUNDLER.value, OperationStatus.PENDING.value).inc()
        logging.info(
            f"UserOperation {user_operation_hash} submitted to bundler")
        return SubmissionResult(
            OperationStatus.PENDING,
            SubmissionPath.BUNDLER,
            user_operation_hash=user_operation_hash,
        )

    async def get_user_operation_receipt(
        self, user_operation_hash: UserOperationHash
    ) -> SubmissionResult:
        if self.bundler_client is None:
            raise ConfigurationError("Bundler url is not configured")
        res = await self.bundler_client.send_rpc_request(
            "eth_getUserOperationReceipt", [user_operation_hash])
        if "error" in res:
            raise RpcTransportError(
                "eth_getUserOperationReceipt failed: "
                + get_rpc_error_message(res))

        receipt = res.get("result")
        if receipt is None:
            return SubmissionResult(
                OperationStatus.PENDING,
                SubmissionPath.BUNDLER,
                user_operation_hash=user_operation_hash,
            )

        transaction_hash = None
        if isinstance(receipt.get("receipt"), dict):
            transaction_hash = receipt["receipt"].get("transactionHash")
        if receipt.get("success"):
            status = OperationStatus.SUCCESS
        else:
            status = OperationStatus.FAILED
            logging.error(
                f"UserOperation {user_operation_hash} failed on chain. "
                f"reason: {receipt.get('reason')}"
            )
        return SubmissionResult(
            status,
            SubmissionPath.BUNDLER,
            user_operation_hash=user_operation_hash,
            transaction_hash=transaction_hash,
        )

    async def wait_for_user_operation_receipt(
        self,
        user_operation_hash: UserOperationHash,
        timeout: float | None = None,
    ) -> SubmissionResult:
        """
        Polls the bundler until the operation is final or `timeout` passes.
        A timeout or a failed receipt query leaves the operation `pending`.
        """
        if timeout is None:
            timeout = self.confirmation_timeout
        started_at = time.monotonic()

        async def poll() -> SubmissionResult:
            while True:
                result = await self.get_user_operation_receipt(
                    user_operation_hash)
                if result.is_final:
                    return result
                await asyncio.sleep(self.poll_interval)

        try:
            result = await asyncio.wait_for(poll(), timeout)
        except asyncio.TimeoutError:
            logging.warning(
                f"UserOperation {user_operation_hash} not included within {timeout}s")
            return SubmissionResult(
                OperationStatus.PENDING,
                SubmissionPath.BUNDLER,
                user_operation_hash=user_operation_hash,
                error_code=PipelineExceptionCode.ConfirmationTimeout,
                error_message=f"not included within {timeout} seconds",
            )
        except UserOperationPipelineException as excp:
            logging.warning(
                f"Lost track of UserOperation {user_operation_hash}: "
                f"{excp.message}"
            )
            return SubmissionResult(
                OperationStatus.PENDING,
                SubmissionPath.BUNDLER,
                user_operation_hash=user_operation_hash,
                error_code=excp.exception_code,
                error_message=excp.message,
            )
        CONFIRMATION_TIME.observe(time.monotonic() - started_at)
        SUBMISSIONS.labels(SubmissionPath.BUNDLER.value, result.status.value).inc()
        return result

    async def simulate_handle_ops(
        self, user_operation: PackedUserOperation, beneficiary: str
    ) -> None:
        call_data = self.entrypoint_client.encode_handle_ops(
            [user_operation], beneficiary)
        res = await eth_call(
            self.entrypoint_client.client, self.entrypoint, call_data, beneficiary)
        if "error" not in res:
            return

        revert_data = _get_revert_data(res)
        if revert_data is not None:
            reason = decode_revert_reason(revert_data)
        else:
            reason = get_rpc_error_message(res)
        SIMULATION_REVERTS.inc()
        logging.error(
            f"handleOps simulation reverted for {user_operation.sender_address}: "
            f"{reason}"
        )
        raise SimulationRevertError(reason, revert_data or "0x")

    async def send_direct(
        self, user_operation: PackedUserOperation
    ) -> SubmissionResult:
        if not user_operation.is_signed:
            raise PreconditionError("UserOperation is not signed")
        if self.relayer is None:
            raise ConfigurationError("Relayer account is not configured")

        relayer = self.relayer
        user_operation_hash = get_user_operation_hash(
            user_operation, self.entrypoint, relayer.chain_id)
        await self.simulate_handle_ops(user_operation, relayer.address)

        call_data = self.entrypoint_client.encode_handle_ops(
            [user_operation], relayer.address)
        started_at = time.monotonic()
        transaction_hash = await relayer.send_transaction(
            self.entrypoint, call_data)

        try:
            receipt = await relayer.wait_for_receipt(
                transaction_hash,
                self.confirmations,
                self.confirmation_timeout,
                self.poll_interval,
            )
        except UserOperationPipelineException as excp:
            # the transaction is out, so nothing after the send is a rejection
            SUBMISSIONS.labels(
                SubmissionPath.DIRECT.value, OperationStatus.PENDING.value).inc()
            return SubmissionResult(
                OperationStatus.PENDING,
                SubmissionPath.DIRECT,
                user_operation_hash=user_operation_hash,
                transaction_hash=transaction_hash,
                error_code=excp.exception_code,
                error_message=excp.message,
            )

        CONFIRMATION_TIME.observe(time.monotonic() - started_at)
        result = self._result_from_transaction_receipt(
            receipt, transaction_hash, user_operation_hash)
        SUBMISSIONS.labels(SubmissionPath.DIRECT.value, result.status.value).inc()
        return result

    async def get_transaction_status(
        self, transaction_hash: TransactionHash
    ) -> SubmissionResult:
        res = await self.entrypoint_client.client.send_rpc_request(
            "eth_getTransactionReceipt", [transaction_hash])
        if "error" in res:
            raise RpcTransportError(
                "eth_getTransactionReceipt failed: " + get_rpc_error_message(res))
        receipt = res.get("result")
        if receipt is None:
            return SubmissionResult(
                OperationStatus.PENDING,
                SubmissionPath.DIRECT,
                transaction_hash=transaction_hash,
            )
        return self._result_from_transaction_receipt(receipt, transaction_hash)

    def _result_from_transaction_receipt(
        self,
        receipt: dict[str, Any],
        transaction_hash: TransactionHash,
        user_operation_hash: UserOperationHash | None = None,
    ) -> SubmissionResult:
        if int(receipt.get("status", "0x0"), 16) == 1:
            status = OperationStatus.SUCCESS
            logging.info(f"Transaction {transaction_hash} included")
        else:
            status = OperationStatus.FAILED
            logging.error(f"Transaction {transaction_hash} reverted")
        return SubmissionResult(
            status,
            SubmissionPath.DIRECT,
            user_operation_hash=user_operation_hash,
            transaction_hash=transaction_hash,
        )
