from eth_account import Account

from passkey_userop.exceptions import ConfigurationError


def import_relayer_account(
    keystore_file_password: str, keystore_file_path: str
) -> tuple[str, str]:
    try:
        with open(keystore_file_path) as keyfile:
            encrypted_key = keyfile.read()
    except OSError as excp:
        raise ConfigurationError(
            f"Can't read relayer keystore {keystore_file_path}: {excp}")
    try:
        private_key = Account.decrypt(encrypted_key, keystore_file_password)
    except ValueError as excp:
        raise ConfigurationError(f"Can't decrypt relayer keystore: {excp}")
    acct = Account.from_key(private_key)
    return acct.address, "0x" + bytes(private_key).hex()


def public_address_from_private_key(private_key: str) -> str:
    if private_key.startswith("0x"):
        private_key = private_key[2:]
    try:
        public_address = Account.from_key(bytes.fromhex(private_key))
    except ValueError as excp:
        raise ConfigurationError(f"Invalid relayer private key: {excp}")
    return public_address.address
