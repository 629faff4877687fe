import json
import logging
import sys
from dataclasses import asdict

import uvloop

from passkey_userop.boot import create_pipeline
from passkey_userop.cli_manager import PipelineConfig, parse_args
from passkey_userop.exceptions import UserOperationPipelineException
from passkey_userop.metrics.metrics import run_metrics_server
from passkey_userop.submission.submission_gateway import SubmissionPath
from passkey_userop.typing import TransactionHash, UserOperationHash
from passkey_userop.wallet.address_resolver import AccountKey


def get_config_json(config: PipelineConfig) -> dict:
    config_dict = asdict(config)
    if config_dict["relayer_private_key"] is not None:
        config_dict["relayer_private_key"] = "***"
    return config_dict


async def show_wallet(config: PipelineConfig) -> dict:
    components = create_pipeline(config)
    account_key = AccountKey.from_passkey(
        config.public_key_x, config.public_key_y, config.credential_id)
    wallet_info = await components.address_resolver.resolve(account_key)
    deposit = await components.entrypoint_client.get_deposit(
        wallet_info.address)
    return {
        "address": wallet_info.address,
        "deployed": wallet_info.deployed,
        "deposit": deposit,
    }


async def show_status(config: PipelineConfig) -> dict:
    components = create_pipeline(config)
    gateway = components.submission_gateway
    operation_hash = config.operation_hash
    if gateway.path == SubmissionPath.BUNDLER:
        result = await gateway.get_user_operation_receipt(
            UserOperationHash(operation_hash))
    else:
        result = await gateway.get_transaction_status(
            TransactionHash(operation_hash))

    status = {
        "status": result.status.value,
        "userOpHash": result.user_operation_hash,
        "transactionHash": result.transaction_hash,
    }
    store = components.pending_operation_store
    if store is not None:
        pending_operation = await store.get(operation_hash)
        if pending_operation is not None:
            status["submittedAt"] = pending_operation.submitted_at
        await store.close()
    return status


async def main(cmd_args=sys.argv[1:]) -> int:
    config = parse_args(cmd_args)
    if config.is_metrics:
        run_metrics_server(port=config.metrics_port)

    try:
        if config.command == "wallet":
            output = await show_wallet(config)
        elif config.command == "status":
            output = await show_status(config)
        elif config.command == "config":
            output = get_config_json(config)
        else:
            logging.error("No command given, use one of: wallet, status, config")
            return 2
    except UserOperationPipelineException as excp:
        logging.critical(
            f"{excp.exception_code.value} error: {excp.message}")
        return 1

    print(json.dumps(output, indent=2))
    return 0


def run() -> None:
    sys.exit(uvloop.run(main()))
