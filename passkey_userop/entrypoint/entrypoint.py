from passkey_userop.typing import Address, UserOperationHash
from passkey_userop.user_operation.user_operation import PackedUserOperation
from passkey_userop.utils.contract_reads import read_contract
from passkey_userop.utils.encode import (
    encode_balance_of_calldata, encode_get_nonce_calldata,
    encode_get_user_op_hash_calldata, encode_handleops_calldata_v7)
from passkey_userop.utils.eth_client_utils import EthClient

ENTRYPOINT_V07 = Address("0x0000000071727De22E5E9d8BAf0edAc6f37da032")
DEFAULT_NONCE_KEY = 0


class EntryPointClient:
    client: EthClient
    entrypoint: Address

    def __init__(self, client: EthClient, entrypoint: Address = ENTRYPOINT_V07):
        self.client = client
        self.entrypoint = entrypoint

    async def get_nonce(
        self, sender: Address, key: int = DEFAULT_NONCE_KEY
    ) -> int:
        (nonce,) = await read_contract(
            self.client,
            self.entrypoint,
            encode_get_nonce_calldata(sender, key),
            ["uint256"],
            "EntryPoint getNonce",
        )
        return nonce

    async def get_user_operation_hash(
        self, user_operation: PackedUserOperation
    ) -> UserOperationHash:
        (user_operation_hash,) = await read_contract(
            self.client,
            self.entrypoint,
            encode_get_user_op_hash_calldata(user_operation.to_list()),
            ["bytes32"],
            "EntryPoint getUserOpHash",
        )
        return UserOperationHash("0x" + user_operation_hash.hex())

    async def get_deposit(self, account: Address) -> int:
        (deposit,) = await read_contract(
            self.client,
            self.entrypoint,
            encode_balance_of_calldata(account),
            ["uint256"],
            "EntryPoint balanceOf",
        )
        return deposit

    def encode_handle_ops(
        self,
        user_operations: list[PackedUserOperation],
        beneficiary: Address,
    ) -> str:
        return encode_handleops_calldata_v7(
            [user_operation.to_list() for user_operation in user_operations],
            beneficiary,
        )
