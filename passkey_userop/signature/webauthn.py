import base64
import binascii
import hashlib
import json
import logging
from dataclasses import dataclass

from passkey_userop.exceptions import DecodeError, PreconditionError
from passkey_userop.signature.signature_codec import (
    WebAuthnSignature, parse_and_normalize_der_signature)


@dataclass(frozen=True)
class WebAuthnAssertion:
    """Raw browser assertion, every field base64url as WebAuthn delivers it."""
    authenticator_data: str
    client_data_json: str
    signature: str


def base64url_decode(value: str) -> bytes:
    try:
        return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
    except (binascii.Error, ValueError) as excp:
        raise DecodeError(f"Invalid base64url value: {excp}")


def base64url_encode(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).rstrip(b"=").decode("ascii")


def get_client_data_challenge(client_data_json: bytes) -> bytes:
    try:
        client_data = json.loads(client_data_json.decode("utf-8"))
        challenge = client_data["challenge"]
    except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError):
        raise DecodeError("Invalid clientDataJSON format")
    return base64url_decode(challenge)


def get_webauthn_message_hash(
    authenticator_data: bytes, client_data_hash: bytes
) -> bytes:
    """The digest the passkey actually signed."""
    return hashlib.sha256(authenticator_data + client_data_hash).digest()


def webauthn_signature_from_assertion(
    assertion: WebAuthnAssertion,
    user_operation_hash: str,
    counter: int,
) -> WebAuthnSignature:
    client_data_json = base64url_decode(assertion.client_data_json)
    challenge = get_client_data_challenge(client_data_json)
    expected_challenge = bytes.fromhex(user_operation_hash[2:])
    if challenge != expected_challenge:
        logging.error(
            f"Signed challenge 0x{challenge.hex()} does not match "
            f"UserOperation hash {user_operation_hash}"
        )
        raise PreconditionError(
            "Signature challenge does not match the UserOperation hash")

    r, s = parse_and_normalize_der_signature(
        base64url_decode(assertion.signature))
    return WebAuthnSignature(
        authenticator_data=base64url_decode(assertion.authenticator_data),
        client_data_hash=hashlib.sha256(client_data_json).digest(),
        r=r,
        s=s,
        counter=counter,
    )
