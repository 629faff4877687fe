import asyncio
import logging
from dataclasses import dataclass

from passkey_userop.entrypoint.entrypoint import DEFAULT_NONCE_KEY, EntryPointClient
from passkey_userop.exceptions import ConfigurationError, PreconditionError
from passkey_userop.gas.gas_manager import GasManager, GasPolicy
from passkey_userop.metrics.metrics import BUILD_TIME, USER_OPERATIONS_BUILT
from passkey_userop.signature.signature_codec import (
    WebAuthnSignature, encode_webauthn_signature)
from passkey_userop.typing import Address, UserOperationHash
from passkey_userop.user_operation.actions import Action, encode_call_data
from passkey_userop.user_operation.user_operation import (
    DEFAULT_PAYMASTER_POST_OP_GAS_LIMIT,
    DEFAULT_PAYMASTER_VERIFICATION_GAS_LIMIT, PackedUserOperation,
    get_user_operation_hash, pack_gas_fees, pack_gas_limits,
    pack_paymaster_and_data)
from passkey_userop.wallet.address_resolver import AccountKey, AddressResolver


@dataclass(frozen=True)
class BuiltUserOperation:
    user_operation: PackedUserOperation
    user_operation_hash: UserOperationHash
    wallet_address: Address
    is_deployed: bool


class OperationBuilder:
    address_resolver: AddressResolver
    entrypoint_client: EntryPointClient
    gas_manager: GasManager
    chain_id: int
    paymaster_address: Address | None
    gas_policy: GasPolicy
    verify_hash_with_entrypoint: bool

    def __init__(
        self,
        address_resolver: AddressResolver,
        entrypoint_client: EntryPointClient,
        gas_manager: GasManager,
        chain_id: int,
        paymaster_address: Address | None = None,
        gas_policy: GasPolicy = GasPolicy(),
        require_paymaster: bool = False,
        verify_hash_with_entrypoint: bool = False,
        paymaster_verification_gas_limit: int = DEFAULT_PAYMASTER_VERIFICATION_GAS_LIMIT,
        paymaster_post_op_gas_limit: int = DEFAULT_PAYMASTER_POST_OP_GAS_LIMIT,
        paymaster_data: bytes = b"",
        nonce_key: int = DEFAULT_NONCE_KEY,
    ) -> None:
        if require_paymaster and not paymaster_address:
            raise ConfigurationError("Paymaster address is not configured")
        self.address_resolver = address_resolver
        self.entrypoint_client = entrypoint_client
        self.gas_manager = gas_manager
        self.chain_id = chain_id
        self.paymaster_address = paymaster_address
        self.gas_policy = gas_policy
        self.verify_hash_with_entrypoint = verify_hash_with_entrypoint
        self.paymaster_verification_gas_limit = paymaster_verification_gas_limit
        self.paymaster_post_op_gas_limit = paymaster_post_op_gas_limit
        self.paymaster_data = paymaster_data
        self.nonce_key = nonce_key

    @property
    def entrypoint(self) -> Address:
        return self.entrypoint_client.entrypoint

    @BUILD_TIME.time()
    async def build_operation(
        self, account_key: AccountKey, action: Action, amount: int
    ) -> BuiltUserOperation:
        wallet_info = await self.address_resolver.resolve(account_key)
        sender = wallet_info.address

        calls = action.get_calls(amount)
        call_data = encode_call_data(calls)

        if wallet_info.deployed:
            init_code = b""
        else:
            init_code = await self.address_resolver.get_init_code(account_key)

        # the nonce is read last so that it is as fresh as possible
        fee_data, nonce = await asyncio.gather(
            self.gas_manager.get_fee_data(),
            self.entrypoint_client.get_nonce(sender, self.nonce_key),
        )

        account_gas_limits = pack_gas_limits(
            self.gas_policy.get_verification_gas_limit(wallet_info.deployed),
            self.gas_policy.get_call_gas_limit(len(calls) > 1),
        )
        gas_fees = pack_gas_fees(
            fee_data.max_priority_fee_per_gas, fee_data.max_fee_per_gas)
        paymaster_and_data = pack_paymaster_and_data(
            self.paymaster_address,
            self.paymaster_verification_gas_limit,
            self.paymaster_post_op_gas_limit,
            self.paymaster_data,
        )

        user_operation = PackedUserOperation(
            sender_address=sender,
            nonce=nonce,
            init_code=init_code,
            call_data=call_data,
            account_gas_limits=account_gas_limits,
            pre_verification_gas=self.gas_policy.pre_verification_gas,
            gas_fees=gas_fees,
            paymaster_and_data=paymaster_and_data,
        )
        user_operation_hash = self.get_user_operation_hash(user_operation)

        if self.verify_hash_with_entrypoint:
            await self.cross_check_user_operation_hash(
                user_operation, user_operation_hash)

        USER_OPERATIONS_BUILT.labels(str(wallet_info.deployed).lower()).inc()
        logging.info(
            f"Built UserOperation {user_operation_hash} for {sender} "
            f"nonce: {nonce} deployed: {wallet_info.deployed} calls: {len(calls)}"
        )
        return BuiltUserOperation(
            user_operation, user_operation_hash, sender, wallet_info.deployed)

    def get_user_operation_hash(
        self, user_operation: PackedUserOperation
    ) -> UserOperationHash:
        return get_user_operation_hash(
            user_operation, self.entrypoint, self.chain_id)

    async def cross_check_user_operation_hash(
        self,
        user_operation: PackedUserOperation,
        user_operation_hash: UserOperationHash,
    ) -> bool:
        entrypoint_hash = await self.entrypoint_client.get_user_operation_hash(
            user_operation)
        if entrypoint_hash.lower() != user_operation_hash.lower():
            logging.warning(
                f"EntryPoint getUserOpHash returned {entrypoint_hash}, "
                f"local hash is {user_operation_hash}"
            )
            return False
        return True

    def attach_signature(
        self,
        built_user_operation: BuiltUserOperation,
        signature: WebAuthnSignature | bytes,
    ) -> PackedUserOperation:
        if isinstance(signature, WebAuthnSignature):
            signature = encode_webauthn_signature(signature)
        if len(signature) == 0:
            raise PreconditionError("Cannot attach an empty signature")
        return built_user_operation.user_operation.with_signature(signature)
