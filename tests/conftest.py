import pytest
import pytest_asyncio

from fakes import (
    CHAIN_ID, ENTRYPOINT, FACTORY, POOL, RELAYER_PRIVATE_KEY, TOKEN,
    FakeBundler, FakeNode, FakeRedis, Passkey)
from passkey_userop.entrypoint.entrypoint import EntryPointClient
from passkey_userop.gas.gas_manager import GasManager
from passkey_userop.mempool.pending_operation_store import PendingOperationStore
from passkey_userop.mempool.sender_lock import SenderLockRegistry
from passkey_userop.pipeline import UserOperationPipeline
from passkey_userop.submission.relayer import Relayer
from passkey_userop.submission.submission_gateway import SubmissionGateway
from passkey_userop.user_operation.actions import InvestAction
from passkey_userop.user_operation.user_operation_builder import OperationBuilder
from passkey_userop.wallet.address_resolver import AddressResolver


@pytest.fixture
def node() -> FakeNode:
    return FakeNode()


@pytest.fixture
def bundler(node) -> FakeBundler:
    return FakeBundler(node)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def pending_store(fake_redis) -> PendingOperationStore:
    return PendingOperationStore(fake_redis)


@pytest.fixture
def passkey() -> Passkey:
    return Passkey()


@pytest.fixture
def address_resolver(node) -> AddressResolver:
    return AddressResolver(node, FACTORY)


@pytest.fixture
def entrypoint_client(node) -> EntryPointClient:
    return EntryPointClient(node, ENTRYPOINT)


@pytest.fixture
def gas_manager(node) -> GasManager:
    return GasManager(node)


@pytest.fixture
def operation_builder(address_resolver, entrypoint_client, gas_manager):
    return OperationBuilder(
        address_resolver, entrypoint_client, gas_manager, CHAIN_ID)


@pytest.fixture
def relayer(node, gas_manager) -> Relayer:
    return Relayer(node, gas_manager, RELAYER_PRIVATE_KEY, CHAIN_ID)


@pytest.fixture
def bundler_gateway(entrypoint_client, bundler, pending_store):
    return SubmissionGateway(
        entrypoint_client,
        bundler_client=bundler,
        pending_operation_store=pending_store,
        confirmation_timeout=1.0,
        poll_interval=0.01,
    )


@pytest.fixture
def direct_gateway(entrypoint_client, relayer):
    return SubmissionGateway(
        entrypoint_client,
        relayer=relayer,
        confirmation_timeout=1.0,
        poll_interval=0.01,
    )


@pytest_asyncio.fixture
async def built_user_operation(operation_builder, node, passkey):
    node.deploy(passkey.account_key)
    return await operation_builder.build_operation(
        passkey.account_key, InvestAction(TOKEN, POOL, 1), 10**18)


@pytest_asyncio.fixture
async def signed_user_operation(operation_builder, built_user_operation, passkey):
    signature = await passkey.sign(built_user_operation)
    return operation_builder.attach_signature(built_user_operation, signature)


@pytest.fixture
def pipeline_factory(operation_builder):
    def factory(gateway, serialize=True):
        return UserOperationPipeline(
            operation_builder,
            gateway,
            SenderLockRegistry() if serialize else None,
            inclusion_timeout=1.0,
        )
    return factory
