import logging
import os
import re
from argparse import ArgumentParser, ArgumentTypeError, Namespace
from dataclasses import dataclass

from passkey_userop.entrypoint.entrypoint import ENTRYPOINT_V07
from passkey_userop.gas.gas_manager import (
    DEFAULT_MAX_FEE_PER_GAS, DEFAULT_MAX_PRIORITY_FEE_PER_GAS)
from passkey_userop.mempool.pending_operation_store import (
    DEFAULT_PENDING_TTL_SECONDS)
from passkey_userop.submission.relayer import (
    DEFAULT_CONFIRMATION_TIMEOUT_SECONDS, DEFAULT_CONFIRMATIONS,
    DEFAULT_DIRECT_GAS_LIMIT, DEFAULT_RECEIPT_POLL_INTERVAL_SECONDS)
from passkey_userop.typing import Address
from passkey_userop.utils.eth_client_utils import DEFAULT_RPC_TIMEOUT_SECONDS
from passkey_userop.utils.import_key import (
    import_relayer_account, public_address_from_private_key)

DEFAULT_CHAIN_ID = 43113


@dataclass()
class PipelineConfig:
    command: str | None
    ethereum_node_url: str
    chain_id: int
    entrypoint: Address
    factory_address: Address | None
    paymaster_address: Address | None
    require_paymaster: bool
    bundler_url: str | None
    relayer_private_key: str | None
    relayer_address: Address | None
    redis_url: str | None
    rpc_timeout: float
    confirmations: int
    confirmation_timeout: float
    receipt_poll_interval: float
    pending_ttl: int
    direct_gas_limit: int
    default_max_fee_per_gas: int
    default_max_priority_fee_per_gas: int
    serialize_per_sender: bool
    verify_user_operation_hash: bool
    is_metrics: bool
    metrics_port: int
    verbose: bool
    public_key_x: str | None = None
    public_key_y: str | None = None
    credential_id: str | None = None
    operation_hash: str | None = None


def address(ep: str):
    address_pattern = "^0x[0-9a-fA-F]{40}$"
    if not isinstance(ep, str) or re.match(address_pattern, ep) is None:
        raise ArgumentTypeError(f"Wrong address format : {ep}")
    return ep


def unsigned_int(value):
    ivalue = int(value)
    if ivalue < 0:
        raise ArgumentTypeError(
                "%s is an invalid unsigned int value" % value)
    return ivalue


def positive_float(value):
    fvalue = float(value)
    if fvalue <= 0:
        raise ArgumentTypeError(
                "%s is an invalid positive value" % value)
    return fvalue


def boolean(value) -> bool:
    if isinstance(value, bool):
        return value
    return value.lower() == "true"


def _get_env_or_default(env_var, default, value_type):
    """
    Helper function to get the value from an environment variable or return the default value.
    """
    value = os.getenv(env_var, None)
    if value is not None:
        return value_type(value)
    return default


def _add_flag(parser: ArgumentParser, name: str, env_var: str, help: str):
    parser.add_argument(
        name,
        type=boolean,
        help=help,
        nargs="?",
        const=True,
        default=_get_env_or_default(env_var, False, boolean),
    )


def initialize_argument_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="passkey-userop",
        description=(
            "Build, sign and submit ERC-4337 UserOperations "
            "for passkey smart wallets"
        ),
    )

    subparsers = parser.add_subparsers(dest="command")
    wallet_parser = subparsers.add_parser(
        "wallet", help="show wallet address, deployment and deposit")
    wallet_parser.add_argument("--public_key_x", type=str, required=True)
    wallet_parser.add_argument("--public_key_y", type=str, required=True)
    wallet_parser.add_argument(
        "--credential_id", type=str, required=True,
        help="0x hex or base64url credential id")
    status_parser = subparsers.add_parser(
        "status",
        help="bundler receipt for a UserOperation hash, "
        "or the transaction status on the direct path")
    status_parser.add_argument("operation_hash", type=str)
    subparsers.add_parser("config", help="print the resolved configuration")

    group = parser.add_mutually_exclusive_group(required=False)

    group.add_argument(
        "--relayer_secret",
        type=str,
        help="Relayer private key, enables the direct submission path",
        nargs="?",
        default=_get_env_or_default("PASSKEY_USEROP_RELAYER_SECRET", None, str),
    )

    group.add_argument(
        "--keystore_file_path",
        type=str,
        help="Relayer keystore file path",
        nargs="?",
        default=_get_env_or_default(
            "PASSKEY_USEROP_KEYSTORE_FILE_PATH", None, str),
    )

    parser.add_argument(
        "--keystore_file_password",
        type=str,
        help="Relayer keystore file password - defaults to no password",
        nargs="?",
        const="",
        default=_get_env_or_default(
            "PASSKEY_USEROP_KEYSTORE_FILE_PASSWORD", "", str),
    )

    parser.add_argument(
        "--ethereum_node_url",
        type=str,
        help="ethereum node url - defaults to http://localhost:8545",
        nargs="?",
        const="http://localhost:8545",
        default=_get_env_or_default(
            "PASSKEY_USEROP_ETHEREUM_NODE_URL", "http://localhost:8545", str),
    )

    parser.add_argument(
        "--chain_id",
        type=unsigned_int,
        help=f"chain id - defaults to {DEFAULT_CHAIN_ID}",
        nargs="?",
        default=_get_env_or_default(
            "PASSKEY_USEROP_CHAIN_ID", DEFAULT_CHAIN_ID, unsigned_int),
    )

    parser.add_argument(
        "--entrypoint",
        type=address,
        help="EntryPoint v0.7 address",
        nargs="?",
        default=_get_env_or_default(
            "PASSKEY_USEROP_ENTRYPOINT", ENTRYPOINT_V07, address),
    )

    parser.add_argument(
        "--factory_address",
        type=address,
        help="passkey wallet factory address",
        nargs="?",
        default=_get_env_or_default(
            "PASSKEY_USEROP_FACTORY_ADDRESS", None, address),
    )

    parser.add_argument(
        "--paymaster_address",
        type=address,
        help="paymaster address - leave empty for self paid operations",
        nargs="?",
        default=_get_env_or_default(
            "PASSKEY_USEROP_PAYMASTER_ADDRESS", None, address),
    )

    _add_flag(
        parser,
        "--require_paymaster",
        "PASSKEY_USEROP_REQUIRE_PAYMASTER",
        "fail when no paymaster address is configured",
    )

    parser.add_argument(
        "--bundler_url",
        type=str,
        help="bundler url - when empty operations go through the relayer",
        nargs="?",
        default=_get_env_or_default("PASSKEY_USEROP_BUNDLER_URL", None, str),
    )

    parser.add_argument(
        "--redis_url",
        type=str,
        help="redis url for the pending operation store",
        nargs="?",
        default=_get_env_or_default("PASSKEY_USEROP_REDIS_URL", None, str),
    )

    parser.add_argument(
        "--rpc_timeout",
        type=positive_float,
        help=f"json-rpc timeout in seconds - defaults to {DEFAULT_RPC_TIMEOUT_SECONDS}",
        nargs="?",
        default=_get_env_or_default(
            "PASSKEY_USEROP_RPC_TIMEOUT", DEFAULT_RPC_TIMEOUT_SECONDS,
            positive_float),
    )

    parser.add_argument(
        "--confirmations",
        type=unsigned_int,
        help=f"confirmations to wait for - defaults to {DEFAULT_CONFIRMATIONS}",
        nargs="?",
        default=_get_env_or_default(
            "PASSKEY_USEROP_CONFIRMATIONS", DEFAULT_CONFIRMATIONS, unsigned_int),
    )

    parser.add_argument(
        "--confirmation_timeout",
        type=positive_float,
        help="seconds to wait for inclusion before reporting pending - "
        f"defaults to {DEFAULT_CONFIRMATION_TIMEOUT_SECONDS}",
        nargs="?",
        default=_get_env_or_default(
            "PASSKEY_USEROP_CONFIRMATION_TIMEOUT",
            DEFAULT_CONFIRMATION_TIMEOUT_SECONDS, positive_float),
    )

    parser.add_argument(
        "--receipt_poll_interval",
        type=positive_float,
        help="seconds between receipt polls - "
        f"defaults to {DEFAULT_RECEIPT_POLL_INTERVAL_SECONDS}",
        nargs="?",
        default=_get_env_or_default(
            "PASSKEY_USEROP_RECEIPT_POLL_INTERVAL",
            DEFAULT_RECEIPT_POLL_INTERVAL_SECONDS, positive_float),
    )

    parser.add_argument(
        "--pending_ttl",
        type=unsigned_int,
        help=f"pending operation ttl in seconds - defaults to {DEFAULT_PENDING_TTL_SECONDS}",
        nargs="?",
        default=_get_env_or_default(
            "PASSKEY_USEROP_PENDING_TTL", DEFAULT_PENDING_TTL_SECONDS,
            unsigned_int),
    )

    parser.add_argument(
        "--direct_gas_limit",
        type=unsigned_int,
        help=f"gas limit of relayer handleOps transactions - defaults to {DEFAULT_DIRECT_GAS_LIMIT}",
        nargs="?",
        default=_get_env_or_default(
            "PASSKEY_USEROP_DIRECT_GAS_LIMIT", DEFAULT_DIRECT_GAS_LIMIT,
            unsigned_int),
    )

    parser.add_argument(
        "--default_max_fee_per_gas",
        type=unsigned_int,
        help="max fee per gas used when fee data is unavailable",
        nargs="?",
        default=_get_env_or_default(
            "PASSKEY_USEROP_DEFAULT_MAX_FEE_PER_GAS", DEFAULT_MAX_FEE_PER_GAS,
            unsigned_int),
    )

    parser.add_argument(
        "--default_max_priority_fee_per_gas",
        type=unsigned_int,
        help="max priority fee per gas used when fee data is unavailable",
        nargs="?",
        default=_get_env_or_default(
            "PASSKEY_USEROP_DEFAULT_MAX_PRIORITY_FEE_PER_GAS",
            DEFAULT_MAX_PRIORITY_FEE_PER_GAS, unsigned_int),
    )

    _add_flag(
        parser,
        "--disable_sender_serialization",
        "PASSKEY_USEROP_DISABLE_SENDER_SERIALIZATION",
        "let operations of the same sender run concurrently",
    )

    _add_flag(
        parser,
        "--verify_user_operation_hash",
        "PASSKEY_USEROP_VERIFY_USER_OPERATION_HASH",
        "cross check the local hash against EntryPoint getUserOpHash",
    )

    _add_flag(
        parser,
        "--metrics",
        "PASSKEY_USEROP_METRICS",
        "enable metrics collection",
    )

    parser.add_argument(
        "--metrics_port",
        type=unsigned_int,
        help="metrics server port - defaults to 8000",
        nargs="?",
        default=_get_env_or_default(
            "PASSKEY_USEROP_METRICS_PORT", 8000, unsigned_int),
    )

    _add_flag(parser, "--verbose", "PASSKEY_USEROP_VERBOSE", "show debug log")

    return parser


def init_logging(args: Namespace):
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(message)s",
        datefmt="%b %d %H:%M:%S",
    )


def init_relayer_address_and_secret(
    args: Namespace,
) -> tuple[Address | None, str | None]:
    if args.keystore_file_path is not None:
        relayer_address, relayer_pk = import_relayer_account(
            args.keystore_file_password, args.keystore_file_path
        )
    elif args.relayer_secret is not None:
        relayer_pk = args.relayer_secret
        relayer_address = public_address_from_private_key(relayer_pk)
    else:
        return None, None
    return Address(relayer_address), relayer_pk


def parse_args(cmd_args: list[str]) -> PipelineConfig:
    argument_parser: ArgumentParser = initialize_argument_parser()
    args = argument_parser.parse_args(cmd_args)
    init_logging(args)

    relayer_address, relayer_pk = init_relayer_address_and_secret(args)

    config = PipelineConfig(
        command=args.command,
        ethereum_node_url=args.ethereum_node_url,
        chain_id=args.chain_id,
        entrypoint=Address(args.entrypoint),
        factory_address=args.factory_address,
        paymaster_address=args.paymaster_address,
        require_paymaster=args.require_paymaster,
        bundler_url=args.bundler_url,
        relayer_private_key=relayer_pk,
        relayer_address=relayer_address,
        redis_url=args.redis_url,
        rpc_timeout=args.rpc_timeout,
        confirmations=args.confirmations,
        confirmation_timeout=args.confirmation_timeout,
        receipt_poll_interval=args.receipt_poll_interval,
        pending_ttl=args.pending_ttl,
        direct_gas_limit=args.direct_gas_limit,
        default_max_fee_per_gas=args.default_max_fee_per_gas,
        default_max_priority_fee_per_gas=args.default_max_priority_fee_per_gas,
        serialize_per_sender=not args.disable_sender_serialization,
        verify_user_operation_hash=args.verify_user_operation_hash,
        is_metrics=args.metrics,
        metrics_port=args.metrics_port,
        verbose=args.verbose,
        public_key_x=getattr(args, "public_key_x", None),
        public_key_y=getattr(args, "public_key_y", None),
        credential_id=getattr(args, "credential_id", None),
        operation_hash=getattr(args, "operation_hash", None),
    )

    if config.bundler_url is None and config.relayer_private_key is None:
        logging.warning(
            "Neither a bundler url nor a relayer account is configured, "
            "UserOperations can't be submitted")
    logging.info(
        f"Configured for chain {config.chain_id} EntryPoint {config.entrypoint}")
    return config
