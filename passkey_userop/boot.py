from dataclasses import dataclass

from passkey_userop.cli_manager import PipelineConfig
from passkey_userop.entrypoint.entrypoint import EntryPointClient
from passkey_userop.gas.gas_manager import GasManager
from passkey_userop.mempool.pending_operation_store import PendingOperationStore
from passkey_userop.mempool.sender_lock import SenderLockRegistry
from passkey_userop.pipeline import UserOperationPipeline
from passkey_userop.submission.relayer import Relayer
from passkey_userop.submission.submission_gateway import SubmissionGateway
from passkey_userop.user_operation.user_operation_builder import OperationBuilder
from passkey_userop.utils.eth_client_utils import EthClient
from passkey_userop.wallet.address_resolver import AddressResolver


@dataclass
class PipelineComponents:
    node_client: EthClient
    address_resolver: AddressResolver
    entrypoint_client: EntryPointClient
    gas_manager: GasManager
    operation_builder: OperationBuilder
    submission_gateway: SubmissionGateway
    pipeline: UserOperationPipeline
    pending_operation_store: PendingOperationStore | None


def create_pipeline(
    config: PipelineConfig,
    node_client: EthClient | None = None,
    bundler_client: EthClient | None = None,
    pending_operation_store: PendingOperationStore | None = None,
) -> PipelineComponents:
    """
    Wires every component from the configuration. Each component gets only
    the handles it uses. Clients can be passed in to share or replace them.
    """
    if node_client is None:
        node_client = EthClient(config.ethereum_node_url, config.rpc_timeout)
    if bundler_client is None and config.bundler_url is not None:
        bundler_client = EthClient(config.bundler_url, config.rpc_timeout)
    if pending_operation_store is None and config.redis_url is not None:
        pending_operation_store = PendingOperationStore.from_url(
            config.redis_url, config.pending_ttl)

    address_resolver = AddressResolver(node_client, config.factory_address)
    entrypoint_client = EntryPointClient(node_client, config.entrypoint)
    gas_manager = GasManager(
        node_client,
        config.default_max_fee_per_gas,
        config.default_max_priority_fee_per_gas,
    )
    operation_builder = OperationBuilder(
        address_resolver,
        entrypoint_client,
        gas_manager,
        config.chain_id,
        paymaster_address=config.paymaster_address,
        require_paymaster=config.require_paymaster,
        verify_hash_with_entrypoint=config.verify_user_operation_hash,
    )

    relayer = None
    if config.relayer_private_key is not None:
        relayer = Relayer(
            node_client,
            gas_manager,
            config.relayer_private_key,
            config.chain_id,
            config.direct_gas_limit,
        )

    submission_gateway = SubmissionGateway(
        entrypoint_client,
        bundler_client=bundler_client,
        relayer=relayer,
        pending_operation_store=pending_operation_store,
        confirmations=config.confirmations,
        confirmation_timeout=config.confirmation_timeout,
        poll_interval=config.receipt_poll_interval,
    )
    pipeline = UserOperationPipeline(
        operation_builder,
        submission_gateway,
        SenderLockRegistry() if config.serialize_per_sender else None,
        config.confirmation_timeout,
    )
    return PipelineComponents(
        node_client,
        address_resolver,
        entrypoint_client,
        gas_manager,
        operation_builder,
        submission_gateway,
        pipeline,
        pending_operation_store,
    )
