import hashlib

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature, encode_dss_signature)

from passkey_userop.exceptions import DecodeError
from passkey_userop.signature.signature_codec import (
    P256_HALF_N, P256_N, WebAuthnSignature, build_p256_verify_input,
    decode_webauthn_signature, encode_webauthn_signature, normalize_s,
    parse_and_normalize_der_signature, parse_der_signature)


def test_der_round_trip_with_real_signature():
    private_key = ec.generate_private_key(ec.SECP256R1())
    message = b"invest 1 token in pool 1"
    der_signature = private_key.sign(message, ec.ECDSA(hashes.SHA256()))

    r, s = parse_der_signature(der_signature)
    expected_r, expected_s = decode_dss_signature(der_signature)
    assert len(r) == 32 and len(s) == 32
    assert int.from_bytes(r, "big") == expected_r
    assert int.from_bytes(s, "big") == expected_s


@pytest.mark.parametrize("r_value,s_value", [
    (1, 2),
    (2**255 + 5, 2**200),  # high bit set, DER adds a 0x00 pad byte
    (P256_N - 1, P256_HALF_N + 1),
])
def test_der_parse_strips_padding_and_left_pads(r_value, s_value):
    r, s = parse_der_signature(encode_dss_signature(r_value, s_value))
    assert r == r_value.to_bytes(32, "big")
    assert s == s_value.to_bytes(32, "big")


def test_high_s_is_normalized():
    s_raw = P256_HALF_N + 12345
    der_signature = encode_dss_signature(99, s_raw)
    _, raw_s = parse_der_signature(der_signature)
    _, normalized_s = parse_and_normalize_der_signature(der_signature)
    assert raw_s != normalized_s
    assert int.from_bytes(normalized_s, "big") == P256_N - s_raw


@pytest.mark.parametrize("s", [1, P256_HALF_N, P256_HALF_N + 1, P256_N - 1])
def test_low_s_normalization_is_idempotent(s):
    once = normalize_s(s)
    assert once <= P256_HALF_N
    assert normalize_s(once) == once


@pytest.mark.parametrize("s", [0, P256_N, P256_N + 1])
def test_normalize_rejects_out_of_range(s):
    with pytest.raises(DecodeError):
        normalize_s(s)


@pytest.mark.parametrize("der_signature", [
    b"",
    bytes.fromhex("31440220") + b"\x01" * 32 + bytes.fromhex("0220") + b"\x01" * 32,
    bytes.fromhex("30440320") + b"\x01" * 32 + bytes.fromhex("0220") + b"\x01" * 32,
    bytes.fromhex("30440220") + b"\x01" * 32 + bytes.fromhex("0420") + b"\x01" * 32,
    bytes.fromhex("30440220") + b"\x01" * 32 + bytes.fromhex("0220") + b"\x01" * 10,
    bytes.fromhex("30460222") + b"\x01" * 34 + bytes.fromhex("0220") + b"\x01" * 32,
    # sequence length does not cover the content
    bytes.fromhex("30050220") + b"\x01" * 32 + bytes.fromhex("0220") + b"\x01" * 32
    + b"\xde\xad",
    # trailing bytes inside the sequence
    bytes.fromhex("30460220") + b"\x01" * 32 + bytes.fromhex("0220") + b"\x01" * 32
    + b"\xde\xad",
    bytes.fromhex("3081440220") + b"\x01" * 32 + bytes.fromhex("0220") + b"\x01" * 32,
])
def test_malformed_der_raises_decode_error(der_signature):
    with pytest.raises(DecodeError):
        parse_der_signature(der_signature)


def make_signature(**overrides) -> WebAuthnSignature:
    fields = dict(
        authenticator_data=b"\x49" * 37,
        client_data_hash=hashlib.sha256(b"client data").digest(),
        r=b"\x01" * 32,
        s=b"\x02" * 32,
        counter=5,
    )
    fields.update(overrides)
    return WebAuthnSignature(**fields)


def test_signature_encoding_is_deterministic_and_decodable():
    signature = make_signature()
    encoded = encode_webauthn_signature(signature)
    assert encoded == encode_webauthn_signature(make_signature())
    # head: offset + 3 words + counter, tail: length word + 37 bytes padded to 64
    assert len(encoded) == 5 * 32 + 32 + 64
    assert decode_webauthn_signature(encoded) == signature


def test_signature_rejects_bad_widths():
    with pytest.raises(DecodeError):
        make_signature(r=b"\x01" * 31)
    with pytest.raises(DecodeError):
        make_signature(counter=2**32)


def test_decode_garbage_signature_payload():
    with pytest.raises(DecodeError):
        decode_webauthn_signature(b"\x00" * 10)


def test_p256_verify_input_layout():
    parts = [bytes([i]) * 32 for i in range(5)]
    verify_input = build_p256_verify_input(*parts)
    assert len(verify_input) == 160
    assert verify_input[64:96] == parts[2]
    with pytest.raises(DecodeError):
        build_p256_verify_input(b"\x00", *parts[1:])
