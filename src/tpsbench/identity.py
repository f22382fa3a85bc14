"""Validator and account identities, derived with xrpl-py key primitives."""

from dataclasses import dataclass

from xrpl import CryptoAlgorithm
from xrpl.core.addresscodec import (
    decode_classic_address,
    encode_classic_address,
    encode_node_public_key,
)
from xrpl.core.keypairs import derive_classic_address, derive_keypair, generate_seed


@dataclass(frozen=True, slots=True)
class ValidatorIdentity:
    name: str
    seed: str
    public_key: str  # n... node public key, as listed in [validators]

    @classmethod
    def from_seed(cls, name: str, seed: str) -> "ValidatorIdentity":
        public_hex, _ = derive_keypair(seed, validator=True)
        return cls(name=name, seed=seed, public_key=encode_node_public_key(bytes.fromhex(public_hex)))

    @classmethod
    def generate(cls, name: str) -> "ValidatorIdentity":
        return cls.from_seed(name, generate_seed(algorithm=CryptoAlgorithm.SECP256K1))


def validator_identities(name: str, count: int, seeds: list[str] | None = None) -> list[ValidatorIdentity]:
    if seeds is None:
        ids = [ValidatorIdentity.generate(f"{name}{i}") for i in range(count)]
    else:
        ids = [ValidatorIdentity.from_seed(f"{name}{i}", s) for i, s in enumerate(seeds[:count])]
    if len({v.public_key for v in ids}) != len(ids):
        raise ValueError("validator identities must be unique")
    return ids


def random_secret() -> str:
    return generate_seed(algorithm=CryptoAlgorithm.SECP256K1)


def derive_identity(secret: str) -> bytes:
    """Return the 20-byte account id controlled by `secret`."""
    public_key, _ = derive_keypair(secret)
    return decode_classic_address(derive_classic_address(public_key))


def address_from_account_id(account_id: bytes) -> str:
    return encode_classic_address(account_id)
