# Copyright (c) 2025 The zkBitcoin developers
# Distributed under the MIT software license

"""
zkBitcoin - Transactions

Consensus (de)serialization of transactions and the TransactionRef variant
accepted by every stage of the funding pipeline.
"""

import struct
from dataclasses import dataclass
from io import BytesIO

from bitcoin.core import CTransaction, CTxIn, CTxOut, b2lx, b2x
from bitcoin.core.serialize import SerializationError, VectorSerializer, ser_read

from .errors import TransactionDecodeError

# nVersion (4 bytes) followed by the segwit marker and flag
_SEGWIT_MARKER = b"\x00\x01"


def serialize_hex(tx: CTransaction) -> str:
    """Consensus-encode a transaction (with witness data) as hex."""
    return b2x(tx.serialize())


def deserialize(raw: bytes) -> CTransaction:
    """
    Decode consensus bytes into a transaction.

    A transaction without inputs is ambiguous: its empty input vector looks
    like the segwit marker. Like bitcoind's DecodeHexTx, the witness reading
    is tried first and the legacy reading is used whenever the witness
    reading does not reproduce the exact input bytes.
    """
    if raw[4:6] == _SEGWIT_MARKER:
        try:
            tx = CTransaction.deserialize(raw)
        except (SerializationError, struct.error, ValueError):
            tx = None
        if tx is not None and tx.serialize() == raw:
            return tx
        return _deserialize_legacy(raw)

    try:
        return CTransaction.deserialize(raw)
    except (SerializationError, struct.error, ValueError) as e:
        raise TransactionDecodeError(f"invalid transaction: {e}") from e


def deserialize_hex(tx_hex: str) -> CTransaction:
    """Decode a hex-encoded transaction."""
    try:
        raw = bytes.fromhex(tx_hex)
    except (TypeError, ValueError) as e:
        raise TransactionDecodeError(f"transaction is not hex: {e}") from e
    return deserialize(raw)


def _deserialize_legacy(raw: bytes) -> CTransaction:
    f = BytesIO(raw)
    try:
        version = struct.unpack(b"<i", ser_read(f, 4))[0]
        vin = VectorSerializer.stream_deserialize(CTxIn, f)
        vout = VectorSerializer.stream_deserialize(CTxOut, f)
        locktime = struct.unpack(b"<I", ser_read(f, 4))[0]
    except (SerializationError, struct.error, ValueError) as e:
        raise TransactionDecodeError(f"invalid transaction: {e}") from e
    if f.read(1):
        raise TransactionDecodeError("invalid transaction: trailing data")
    return CTransaction(vin, vout, locktime, version)


def txid(tx: CTransaction) -> str:
    """Transaction id in the usual (byte-reversed) hex form."""
    return b2lx(tx.GetTxid())


# =============================================================================
# PIPELINE INPUT
# =============================================================================

class TransactionRef:
    """
    A transaction handed to a pipeline stage, in whichever form is at hand.

    Stages return both forms, so the next stage can be given the hex it
    just produced without re-encoding:

        hex_tx, tx = await fund_raw_transaction(ctx, StructuredTransaction(tx))
        hex_tx, tx = await sign_transaction(ctx, HexTransaction(hex_tx))
    """

    def to_hex(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class HexTransaction(TransactionRef):
    """Already-serialized transaction."""
    hex: str

    def to_hex(self) -> str:
        return self.hex


@dataclass(frozen=True)
class StructuredTransaction(TransactionRef):
    """Decoded transaction, serialized on demand."""
    tx: CTransaction

    def to_hex(self) -> str:
        return serialize_hex(self.tx)
