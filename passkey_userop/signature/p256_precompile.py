import logging

from passkey_userop.exceptions import ChainReadError
from passkey_userop.signature.signature_codec import build_p256_verify_input
from passkey_userop.utils.eth_client_utils import (
    EthClient, eth_call, get_rpc_error_message)

# RIP-7212 / ACP-204 secp256r1 verification precompile
P256_VERIFY_PRECOMPILE = "0x0000000000000000000000000000000000000100"


async def verify_with_p256_precompile(
    client: EthClient,
    message_hash: bytes,
    r: bytes,
    s: bytes,
    public_key_x: bytes,
    public_key_y: bytes,
    precompile_address: str = P256_VERIFY_PRECOMPILE,
) -> bool:
    """
    Diagnostic only: asks the chain whether (r, s) is a valid signature of
    message_hash under the public key. The wallet performs the same check
    during validation.
    """
    call_input = build_p256_verify_input(
        message_hash, r, s, public_key_x, public_key_y)
    res = await eth_call(client, precompile_address, "0x" + call_input.hex())
    if "result" not in res:
        raise ChainReadError(
            "P-256 precompile call failed: " + get_rpc_error_message(res))

    output = res["result"]
    # an unavailable precompile or a failed check returns empty output
    if output in (None, "", "0x"):
        logging.debug("P-256 precompile returned empty output")
        return False
    return int(output, 16) == 1
