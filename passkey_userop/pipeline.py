import logging
from contextlib import AsyncExitStack
from typing import Awaitable, Callable

from passkey_userop.mempool.sender_lock import SenderLockRegistry
from passkey_userop.signature.signature_codec import WebAuthnSignature
from passkey_userop.submission.submission_gateway import (
    SubmissionGateway, SubmissionPath, SubmissionResult)
from passkey_userop.user_operation.actions import Action
from passkey_userop.user_operation.user_operation_builder import (
    BuiltUserOperation, OperationBuilder)
from passkey_userop.wallet.address_resolver import AccountKey

Signer = Callable[[BuiltUserOperation], Awaitable[WebAuthnSignature | bytes]]


class UserOperationPipeline:
    """
    build -> sign -> submit -> wait for inclusion, for one operation.

    With `sender_locks` set, operations for the same sender run one at a
    time, the lock being held from the nonce read until the operation is
    final or the inclusion wait times out. Without it concurrent operations
    for one sender can read the same nonce and at most one of them lands.
    """

    operation_builder: OperationBuilder
    submission_gateway: SubmissionGateway
    sender_locks: SenderLockRegistry | None

    def __init__(
        self,
        operation_builder: OperationBuilder,
        submission_gateway: SubmissionGateway,
        sender_locks: SenderLockRegistry | None = None,
        inclusion_timeout: float | None = None,
    ) -> None:
        self.operation_builder = operation_builder
        self.submission_gateway = submission_gateway
        self.sender_locks = sender_locks
        self.inclusion_timeout = inclusion_timeout

    async def get_next_signature_counter(
        self, built_user_operation: BuiltUserOperation
    ) -> int:
        if not built_user_operation.is_deployed:
            return 1
        counter = await self.operation_builder.address_resolver.get_signature_counter(
            built_user_operation.wallet_address)
        return counter + 1

    async def execute(
        self,
        account_key: AccountKey,
        action: Action,
        amount: int,
        sign: Signer,
    ) -> SubmissionResult:
        async with AsyncExitStack() as stack:
            if self.sender_locks is not None:
                sender = await self.operation_builder.address_resolver.compute_address(
                    account_key)
                await stack.enter_async_context(self.sender_locks.hold(sender))
            return await self._execute(account_key, action, amount, sign)

    async def _execute(
        self,
        account_key: AccountKey,
        action: Action,
        amount: int,
        sign: Signer,
    ) -> SubmissionResult:
        built_user_operation = await self.operation_builder.build_operation(
            account_key, action, amount)
        signature = await sign(built_user_operation)
        user_operation = self.operation_builder.attach_signature(
            built_user_operation, signature)

        result = await self.submission_gateway.submit(user_operation)
        if (
            result.path == SubmissionPath.BUNDLER
            and result.user_operation_hash is not None
            and not result.is_final
        ):
            result = await self.submission_gateway.wait_for_user_operation_receipt(
                result.user_operation_hash, self.inclusion_timeout)

        logging.info(
            f"UserOperation {built_user_operation.user_operation_hash} "
            f"from {built_user_operation.wallet_address} "
            f"nonce: {user_operation.nonce} status: {result.status.value}"
        )
        return result
