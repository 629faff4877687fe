import logging
import re
from dataclasses import dataclass

from eth_utils import to_checksum_address

from passkey_userop.exceptions import ChainReadError, ConfigurationError, DecodeError
from passkey_userop.signature.webauthn import base64url_decode
from passkey_userop.typing import Address
from passkey_userop.utils.contract_reads import get_code, read_contract
from passkey_userop.utils.encode import (
    encode_factory_calldata, encode_function_call)
from passkey_userop.utils.eth_client_utils import EthClient

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def coordinate_to_bytes32(coordinate: str) -> bytes:
    clean = coordinate[2:] if coordinate[:2] in ("0x", "0X") else coordinate
    if len(clean) > 64 or re.match("^[0-9a-fA-F]*$", clean) is None:
        raise DecodeError(f"Invalid public key coordinate : {coordinate}")
    return bytes.fromhex(clean.rjust(64, "0"))


def credential_id_to_bytes32(credential_id: str) -> bytes:
    # hex encoded ids are accepted as is, anything else is base64url
    if re.match("^0x([0-9a-fA-F]{2})*$", credential_id) is not None:
        raw = bytes.fromhex(credential_id[2:])
    else:
        raw = base64url_decode(credential_id)
    return raw[:32].ljust(32, b"\x00")


@dataclass(frozen=True)
class AccountKey:
    public_key_x: bytes
    public_key_y: bytes
    credential_id: bytes

    @classmethod
    def from_passkey(
        cls, public_key_x: str, public_key_y: str, credential_id: str
    ) -> "AccountKey":
        return cls(
            coordinate_to_bytes32(public_key_x),
            coordinate_to_bytes32(public_key_y),
            credential_id_to_bytes32(credential_id),
        )

    def factory_args(self) -> tuple[bytes, bytes, bytes]:
        return self.public_key_x, self.public_key_y, self.credential_id


@dataclass(frozen=True)
class WalletInfo:
    address: Address
    deployed: bool


class AddressResolver:
    client: EthClient
    factory_address: Address
    _address_cache: dict[AccountKey, Address]

    def __init__(
        self,
        client: EthClient,
        factory_address: Address | None,
        use_cache: bool = True,
    ) -> None:
        if not factory_address:
            raise ConfigurationError("Wallet factory address is not configured")
        self.client = client
        self.factory_address = factory_address
        self.use_cache = use_cache
        self._address_cache = {}

    async def compute_address(self, account_key: AccountKey) -> Address:
        if self.use_cache and account_key in self._address_cache:
            return self._address_cache[account_key]

        (address,) = await read_contract(
            self.client,
            self.factory_address,
            encode_factory_calldata("getAddress", *account_key.factory_args()),
            ["address"],
            "factory getAddress",
        )
        if address == ZERO_ADDRESS:
            raise ChainReadError("factory getAddress returned the zero address")

        wallet_address = Address(to_checksum_address(address))
        if self.use_cache:
            self._address_cache[account_key] = wallet_address
        return wallet_address

    async def is_deployed(self, wallet_address: Address) -> bool:
        code = await get_code(self.client, wallet_address)
        return code not in (None, "", "0x")

    async def resolve(self, account_key: AccountKey) -> WalletInfo:
        wallet_address = await self.compute_address(account_key)
        deployed = await self.is_deployed(wallet_address)
        logging.debug(f"Wallet {wallet_address} deployed: {deployed}")
        return WalletInfo(wallet_address, deployed)

    async def get_wallet_info(self, account_key: AccountKey) -> WalletInfo:
        deployed, address = await read_contract(
            self.client,
            self.factory_address,
            encode_factory_calldata("walletExists", *account_key.factory_args()),
            ["bool", "address"],
            "factory walletExists",
        )
        return WalletInfo(Address(to_checksum_address(address)), deployed)

    async def get_init_code(self, account_key: AccountKey) -> bytes:
        (init_code,) = await read_contract(
            self.client,
            self.factory_address,
            encode_factory_calldata("getInitCode", *account_key.factory_args()),
            ["bytes"],
            "factory getInitCode",
        )
        if len(init_code) < 20:
            raise ChainReadError("factory getInitCode returned empty init code")
        return init_code

    async def get_signature_counter(self, wallet_address: Address) -> int:
        (counter,) = await read_contract(
            self.client,
            wallet_address,
            "0x" + encode_function_call("signatureCounter()", [], []).hex(),
            ["uint32"],
            "wallet signatureCounter",
        )
        return counter
