from dataclasses import dataclass

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError

from passkey_userop.exceptions import DecodeError

P256_N = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551
P256_HALF_N = P256_N // 2

DER_SEQUENCE_TAG = 0x30
DER_INTEGER_TAG = 0x02

WEBAUTHN_SIGNATURE_ABI = ["bytes", "bytes32", "bytes32", "bytes32", "uint32"]


@dataclass(frozen=True)
class WebAuthnSignature:
    authenticator_data: bytes
    client_data_hash: bytes
    r: bytes
    s: bytes
    counter: int

    def __post_init__(self):
        for field_name in ("client_data_hash", "r", "s"):
            if len(getattr(self, field_name)) != 32:
                raise DecodeError(f"{field_name} must be exactly 32 bytes")
        if not 0 <= self.counter < 2**32:
            raise DecodeError(f"counter {self.counter} does not fit in 32 bits")


def _read_der_integer(
    der_signature: bytes, offset: int, component: str
) -> tuple[bytes, int]:
    if offset + 2 > len(der_signature):
        raise DecodeError(f"Invalid DER signature ({component}): truncated")
    if der_signature[offset] != DER_INTEGER_TAG:
        raise DecodeError(
            f"Invalid DER signature ({component}): expected integer tag "
            f"0x02 at offset {offset}, found {hex(der_signature[offset])}"
        )
    length = der_signature[offset + 1]
    start = offset + 2
    end = start + length
    if length == 0 or end > len(der_signature):
        raise DecodeError(
            f"Invalid DER signature ({component}): bad length {length}")
    value = der_signature[start:end]

    # DER integers are signed, a positive value with the high bit set
    # carries one 0x00 pad byte
    while len(value) > 32 and value[0] == 0x00:
        value = value[1:]
    if len(value) > 32:
        raise DecodeError(
            f"Invalid DER signature ({component}): longer than 32 bytes")
    return value.rjust(32, b"\x00"), end


def parse_der_signature(der_signature: bytes) -> tuple[bytes, bytes]:
    """
    Split a DER encoded ECDSA signature into 32 byte big-endian r and s.
    """
    if len(der_signature) < 2 or der_signature[0] != DER_SEQUENCE_TAG:
        raise DecodeError(
            "Invalid DER signature: expected sequence tag 0x30 at offset 0")
    sequence_length = der_signature[1]
    if sequence_length & 0x80:
        raise DecodeError(
            "Invalid DER signature: long form sequence length")
    if sequence_length != len(der_signature) - 2:
        raise DecodeError(
            f"Invalid DER signature: sequence length {sequence_length} does "
            f"not match {len(der_signature) - 2} remaining bytes"
        )
    r, offset = _read_der_integer(der_signature, 2, "r")
    s, end = _read_der_integer(der_signature, offset, "s")
    if end != len(der_signature):
        raise DecodeError(
            f"Invalid DER signature: {len(der_signature) - end} trailing bytes")
    return r, s


def normalize_s(s: int, curve_order: int = P256_N) -> int:
    if not 0 < s < curve_order:
        raise DecodeError("s is out of range for the curve order")
    if s > curve_order // 2:
        return curve_order - s
    return s


def normalize_s_bytes(s: bytes, curve_order: int = P256_N) -> bytes:
    return normalize_s(int.from_bytes(s, "big"), curve_order).to_bytes(32, "big")


def parse_and_normalize_der_signature(der_signature: bytes) -> tuple[bytes, bytes]:
    r, s = parse_der_signature(der_signature)
    return r, normalize_s_bytes(s)


def encode_webauthn_signature(signature: WebAuthnSignature) -> bytes:
    return encode(
        WEBAUTHN_SIGNATURE_ABI,
        [
            signature.authenticator_data,
            signature.client_data_hash,
            signature.r,
            signature.s,
            signature.counter,
        ],
    )


def decode_webauthn_signature(encoded_signature: bytes) -> WebAuthnSignature:
    try:
        (
            authenticator_data,
            client_data_hash,
            r,
            s,
            counter,
        ) = decode(WEBAUTHN_SIGNATURE_ABI, encoded_signature)
    except (DecodingError, ValueError) as excp:
        raise DecodeError(f"Invalid WebAuthn signature payload: {excp}")
    return WebAuthnSignature(
        authenticator_data, client_data_hash, r, s, counter)


def build_p256_verify_input(
    message_hash: bytes,
    r: bytes,
    s: bytes,
    public_key_x: bytes,
    public_key_y: bytes,
) -> bytes:
    """hash(32) || r(32) || s(32) || x(32) || y(32), the precompile input."""
    parts = [message_hash, r, s, public_key_x, public_key_y]
    if any(len(part) != 32 for part in parts):
        raise DecodeError("P-256 verify input parts must be 32 bytes each")
    return b"".join(parts)
