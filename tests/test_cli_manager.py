import json

import pytest
from eth_account import Account

from fakes import FACTORY, RELAYER_PRIVATE_KEY, FakeBundler, FakeNode, FakeRedis
from passkey_userop.boot import create_pipeline
from passkey_userop.cli_manager import parse_args
from passkey_userop.main import get_config_json, main
from passkey_userop.mempool.pending_operation_store import PendingOperationStore
from passkey_userop.submission.submission_gateway import SubmissionPath


def test_defaults(monkeypatch):
    for name in ("PASSKEY_USEROP_CHAIN_ID", "PASSKEY_USEROP_BUNDLER_URL"):
        monkeypatch.delenv(name, raising=False)
    config = parse_args(["config"])
    assert config.command == "config"
    assert config.chain_id == 43113
    assert config.entrypoint == "0x0000000071727De22E5E9d8BAf0edAc6f37da032"
    assert config.confirmations == 2
    assert config.confirmation_timeout == 120.0
    assert config.pending_ttl == 3600
    assert config.direct_gas_limit == 1_000_000
    assert config.serialize_per_sender
    assert config.bundler_url is None
    assert config.relayer_address is None


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("PASSKEY_USEROP_CHAIN_ID", "1337")
    monkeypatch.setenv("PASSKEY_USEROP_FACTORY_ADDRESS", FACTORY)
    monkeypatch.setenv("PASSKEY_USEROP_DISABLE_SENDER_SERIALIZATION", "true")
    config = parse_args(["--bundler_url", "http://bundler:3000/rpc", "config"])
    assert config.chain_id == 1337
    assert config.factory_address == FACTORY
    assert not config.serialize_per_sender
    assert config.bundler_url == "http://bundler:3000/rpc"


def test_invalid_address_is_rejected():
    with pytest.raises(SystemExit):
        parse_args(["--factory_address", "0x1234", "config"])


def test_relayer_secret_resolves_address():
    config = parse_args(["--relayer_secret", RELAYER_PRIVATE_KEY, "config"])
    assert config.relayer_address == Account.from_key(RELAYER_PRIVATE_KEY).address
    assert get_config_json(config)["relayer_private_key"] == "***"


def test_relayer_keystore(tmp_path):
    keystore = Account.encrypt(RELAYER_PRIVATE_KEY, "secret", iterations=2)
    keystore_file = tmp_path / "relayer.json"
    keystore_file.write_text(json.dumps(keystore))
    config = parse_args([
        "--keystore_file_path", str(keystore_file),
        "--keystore_file_password", "secret",
        "config",
    ])
    assert config.relayer_private_key == RELAYER_PRIVATE_KEY


def test_create_pipeline_picks_submission_path():
    node = FakeNode()
    config = parse_args([
        "--factory_address", FACTORY,
        "--relayer_secret", RELAYER_PRIVATE_KEY,
        "config",
    ])
    components = create_pipeline(config, node_client=node)
    assert components.submission_gateway.path == SubmissionPath.DIRECT
    assert components.pipeline.sender_locks is not None

    components = create_pipeline(
        config,
        node_client=node,
        bundler_client=FakeBundler(node),
        pending_operation_store=PendingOperationStore(FakeRedis()),
    )
    assert components.submission_gateway.path == SubmissionPath.BUNDLER


async def test_config_command_prints_json(capsys):
    assert await main(["--chain_id", "5", "config"]) == 0
    output = json.loads(capsys.readouterr().out)
    assert output["chain_id"] == 5


async def test_wallet_command_without_factory_fails(monkeypatch):
    monkeypatch.delenv("PASSKEY_USEROP_FACTORY_ADDRESS", raising=False)
    assert await main([
        "wallet",
        "--public_key_x", "0x01",
        "--public_key_y", "0x02",
        "--credential_id", "0x03",
    ]) == 1
