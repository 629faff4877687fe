from dataclasses import dataclass

from passkey_userop.typing import Address
from passkey_userop.utils.encode import (
    encode_erc20_approve_calldata, encode_execute_batch_calldata,
    encode_execute_calldata, encode_pool_invest_calldata)


@dataclass(frozen=True)
class ContractCall:
    target: Address
    value: int
    data: bytes


class Action:
    """An intent the wallet executes, expanded into contract calls."""

    def get_calls(self, amount: int) -> list[ContractCall]:
        raise NotImplementedError


@dataclass(frozen=True)
class CallAction(Action):
    target: Address
    data: bytes = b""
    value: int = 0

    def get_calls(self, amount: int) -> list[ContractCall]:
        return [ContractCall(self.target, self.value, self.data)]


@dataclass(frozen=True)
class ApproveAction(Action):
    token: Address
    spender: Address

    def get_calls(self, amount: int) -> list[ContractCall]:
        return [
            ContractCall(
                self.token, 0, encode_erc20_approve_calldata(self.spender, amount))
        ]


@dataclass(frozen=True)
class InvestAction(Action):
    """
    Approve the pool to pull `amount` of the token, then invest it.
    Both calls go out as one executeBatch so they revert together.
    """
    token: Address
    pool: Address
    pool_id: int

    def get_calls(self, amount: int) -> list[ContractCall]:
        return [
            ContractCall(
                self.token, 0, encode_erc20_approve_calldata(self.pool, amount)),
            ContractCall(
                self.pool, 0, encode_pool_invest_calldata(self.pool_id, amount)),
        ]


def encode_call_data(calls: list[ContractCall]) -> bytes:
    if len(calls) == 0:
        raise ValueError("An action must produce at least one call")
    if len(calls) == 1:
        call = calls[0]
        return encode_execute_calldata(call.target, call.value, call.data)
    return encode_execute_batch_calldata(
        [call.target for call in calls],
        [call.value for call in calls],
        [call.data for call in calls],
    )
