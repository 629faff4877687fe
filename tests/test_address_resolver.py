import pytest

from fakes import FACTORY
from passkey_userop.exceptions import ChainReadError, ConfigurationError, DecodeError
from passkey_userop.wallet.address_resolver import (
    AccountKey, AddressResolver, coordinate_to_bytes32, credential_id_to_bytes32)


def test_coordinates_are_left_padded():
    assert coordinate_to_bytes32("0x01") == b"\x00" * 31 + b"\x01"
    assert coordinate_to_bytes32("ff" * 32) == b"\xff" * 32
    with pytest.raises(DecodeError):
        coordinate_to_bytes32("0x" + "00" * 33)
    with pytest.raises(DecodeError):
        coordinate_to_bytes32("0xnothex")


def test_credential_id_encodings():
    assert credential_id_to_bytes32("0x0102") == b"\x01\x02" + b"\x00" * 30
    # base64url of b"\xfb\xff"
    assert credential_id_to_bytes32("-_8") == b"\xfb\xff" + b"\x00" * 30
    assert credential_id_to_bytes32("0x" + "11" * 40) == b"\x11" * 32


def test_resolver_requires_factory(node):
    with pytest.raises(ConfigurationError):
        AddressResolver(node, None)
    assert node.requests == []


async def test_compute_address_is_deterministic(node, passkey):
    resolver = AddressResolver(node, FACTORY, use_cache=False)
    first = await resolver.compute_address(passkey.account_key)
    second = await resolver.compute_address(
        AccountKey.from_passkey(
            passkey.public_key_x, passkey.public_key_y, passkey.credential_id))
    assert first == second == node.wallet_address(passkey.account_key)
    assert len(node.calls_to("eth_call")) == 2


async def test_compute_address_is_cached(node, address_resolver, passkey):
    await address_resolver.compute_address(passkey.account_key)
    await address_resolver.compute_address(passkey.account_key)
    assert len(node.calls_to("eth_call")) == 1


async def test_factory_failure_propagates(node, address_resolver, passkey):
    node.factory_error = "execution reverted"
    with pytest.raises(ChainReadError):
        await address_resolver.compute_address(passkey.account_key)


async def test_zero_address_is_never_returned(node, address_resolver, passkey):
    node.factory_returns_zero_address = True
    with pytest.raises(ChainReadError):
        await address_resolver.compute_address(passkey.account_key)


async def test_resolve_reports_deployment(node, address_resolver, passkey):
    wallet_info = await address_resolver.resolve(passkey.account_key)
    assert not wallet_info.deployed

    node.deploy(passkey.account_key)
    wallet_info = await address_resolver.resolve(passkey.account_key)
    assert wallet_info.deployed
    assert wallet_info == await address_resolver.get_wallet_info(
        passkey.account_key)


async def test_init_code_starts_with_factory(address_resolver, passkey):
    init_code = await address_resolver.get_init_code(passkey.account_key)
    assert init_code[:20] == bytes.fromhex(FACTORY[2:])
    assert init_code[56:88] == passkey.account_key.public_key_y


async def test_signature_counter(node, address_resolver, passkey):
    wallet_address = node.deploy(passkey.account_key)
    node.signature_counters[wallet_address.lower()] = 41
    assert await address_resolver.get_signature_counter(wallet_address) == 41
