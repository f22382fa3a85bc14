"""Signed payment batch generation.

Every transaction pays a fixed amount from the funding account to a brand new
account derived from a fresh random secret. Sequences are assigned in
generation order so the batch, read backwards, is the worst possible arrival
order for the entry node.
"""
import hashlib
import logging
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from xrpl import CryptoAlgorithm
from xrpl.core.binarycodec import encode, encode_for_signing
from xrpl.core.keypairs import sign
from xrpl.models.transactions import Payment
from xrpl.wallet import Wallet

import tpsbench.constants as C
from tpsbench.errors import GenerationFailure
from tpsbench.identity import address_from_account_id, derive_identity, random_secret

log = logging.getLogger("tpsbench.batch")

PROGRESS_EVERY = 1000


@dataclass(frozen=True, slots=True)
class SignedTxn:
    index: int
    sequence: int
    account: str
    destination: str
    amount: str
    fee: str
    tx_blob: str
    tx_hash: str


class Batch:
    def __init__(self, txns: list[SignedTxn]) -> None:
        self._txns = tuple(txns)

    def __len__(self) -> int:
        return len(self._txns)

    def __getitem__(self, index: int) -> SignedTxn:
        return self._txns[index]

    def __iter__(self) -> Iterator[SignedTxn]:
        return iter(self._txns)

    @property
    def target(self) -> SignedTxn:
        """Lowest sequence, submitted last; its finality gates the run."""
        return self._txns[0]

    def submission_order(self) -> Iterator[SignedTxn]:
        return reversed(self._txns)


def _sha512half(b: bytes) -> bytes:
    return hashlib.sha512(b).digest()[:32]


def txid_from_signed_blob_hex(signed_blob_hex: str) -> str:
    # XRPL txid = SHA512Half(0x54584E00 || signed_bytes)
    return _sha512half(bytes.fromhex("54584E00") + bytes.fromhex(signed_blob_hex)).hex().upper()


def funding_wallet(seed: str = C.GENESIS["seed"]) -> Wallet:
    return Wallet.from_seed(seed, algorithm=CryptoAlgorithm.SECP256K1)


def sign_payment(
    wallet: Wallet,
    *,
    index: int,
    sequence: int,
    destination: str,
    amount: str,
    fee: str,
    network_id: int | None = None,
) -> SignedTxn:
    txn = Payment(
        account=wallet.address,
        destination=destination,
        amount=amount,
        sequence=sequence,
        fee=fee,
        network_id=network_id,
    )
    tx = txn.to_xrpl()
    if tx.get("Flags") == 0:
        del tx["Flags"]
    tx["SigningPubKey"] = wallet.public_key

    signing_blob = encode_for_signing(tx)
    to_sign = signing_blob if isinstance(signing_blob, str) else signing_blob.hex()
    tx["TxnSignature"] = sign(to_sign, wallet.private_key)
    signed_blob_hex = encode(tx)
    return SignedTxn(
        index=index,
        sequence=sequence,
        account=wallet.address,
        destination=destination,
        amount=amount,
        fee=fee,
        tx_blob=signed_blob_hex,
        tx_hash=txid_from_signed_blob_hex(signed_blob_hex),
    )


def generate_batch(
    n: int,
    wallet: Wallet,
    *,
    first_sequence: int = 1,
    amount: str = C.DEFAULT_AMOUNT,
    fee: str = C.DEFAULT_FEE,
    network_id: int | None = None,
    secret_factory: Callable[[], str] = random_secret,
    cancel: threading.Event | None = None,
) -> Batch:
    """Sign `n` payments with sequences `first_sequence .. first_sequence + n - 1`.

    Any failure aborts the whole batch with GenerationFailure, and so does
    `cancel` being set, which is checked before every signature.
    """
    if n < 0:
        raise ValueError(f"batch size must be >= 0, got {n}")
    if network_id is not None and network_id <= C.NETWORK_ID_FIELD_THRESHOLD:
        network_id = None  # legacy networks reject the NetworkID field

    txns: list[SignedTxn] = []
    for i in range(n):
        if cancel is not None and cancel.is_set():
            raise GenerationFailure(i, "cancelled")
        try:
            destination = address_from_account_id(derive_identity(secret_factory()))
            txns.append(
                sign_payment(
                    wallet,
                    index=i,
                    sequence=first_sequence + i,
                    destination=destination,
                    amount=amount,
                    fee=fee,
                    network_id=network_id,
                )
            )
        except Exception as e:
            raise GenerationFailure(i, str(e)) from e
        if (i + 1) % PROGRESS_EVERY == 0:
            log.info("Signed %s/%s transactions", i + 1, n)
    log.info("Generated %s transactions from %s (sequences %s..%s)",
             n, wallet.address, first_sequence, first_sequence + n - 1)
    return Batch(txns)
