"""Blocker plug-ins for candidate generation.

Each blocker maps records to block keys. Records sharing a key become
candidate pairs. The design prioritises *recall*, deferring precision to
the scoring stage.

Architecture
------------
* ``Blocker``: structural protocol (two attributes + one method).
* Pure functions for hashing / tokenisation (no hidden state).
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from typing import Protocol, runtime_checkable

from datasketch import MinHash

from recolink.models.records import Record, name_tokens, normalize_text

# ============================================================================
# Constants
# ============================================================================

MINHASH_NUM_PERM = 64
MINHASH_BANDS = 16
MINHASH_MIN_TOKENS = 1
MINHASH_SEED = 42

IDENTIFIER_PREFIX_LEN = 4


# ============================================================================
# Statistics
# ============================================================================


@dataclass
class BlockerStats:
    """Counters collected while running a single blocker.

    Attributes
    ----------
    records_seen : int
        Total records processed.
    records_keyed : int
        Records that produced at least one blocking key.
    unique_keys : int
        Distinct blocking keys generated.
    blocks_gt1 : int
        Blocks able to produce at least one pair.
    pairs_raw : int
        Total candidate pairs before cross-block dedup.
    pairs_unique : int
        Pairs first emitted by this blocker.
    max_block : int
        Largest block size encountered.
    """

    records_seen: int = 0
    records_keyed: int = 0
    unique_keys: int = 0
    blocks_gt1: int = 0
    pairs_raw: int = 0
    pairs_unique: int = 0
    max_block: int = 0

    def to_dict(self) -> dict[str, int]:
        """Serialise to a plain dict."""
        return asdict(self)


# ============================================================================
# Protocol
# ============================================================================


@runtime_checkable
class Blocker(Protocol):
    """Structural protocol every blocker must satisfy.

    Attributes
    ----------
    name : str
        Stable identifier used in audit logs and pair provenance.
    match_key : str
        Semantic label for the field(s) this blocker relies on.
    """

    name: str
    match_key: str

    def block_keys(self, record: Record) -> Iterable[str]:
        """Yield zero or more blocking keys for *record*.

        Returns an empty iterable when the record lacks the data
        this blocker needs.
        """
        ...


# ============================================================================
# Blockers
# ============================================================================


class FieldExactBlocker:
    """Block by the normalised value of one field."""

    match_key: str

    def __init__(self, field: str) -> None:
        self.field = field
        self.name = f"field_exact:{field}"
        self.match_key = field

    def block_keys(self, record: Record) -> Iterable[str]:
        """Yield the normalised value if present."""
        value = normalize_text(record.get(self.field))
        if value:
            yield f"fx:{value}"


class IdentifierPrefixBlocker:
    """Block by the first characters of a normalised identifier.

    Attributes
    ----------
    field : str
        Identifier field.
    prefix_len : int
        Number of leading characters kept (whitespace removed).
    """

    def __init__(self, field: str = "id", prefix_len: int = IDENTIFIER_PREFIX_LEN) -> None:
        self.field = field
        self.prefix_len = prefix_len
        self.name = f"identifier_prefix:{field}"
        self.match_key = field

    def block_keys(self, record: Record) -> Iterable[str]:
        """Yield the identifier prefix if present."""
        value = normalize_text(record.get(self.field)).replace(" ", "")
        if value:
            yield f"ip:{value[: self.prefix_len]}"


class NameTokenBlocker:
    """Block by every normalised name token."""

    def __init__(self, field: str = "name") -> None:
        self.field = field
        self.name = f"name_token:{field}"
        self.match_key = field

    def block_keys(self, record: Record) -> Iterable[str]:
        """Yield one key per distinct token, in sorted order."""
        for token in sorted(set(name_tokens(record.get(self.field)))):
            yield f"nt:{token}"


class MinHashLSHNameBlocker:
    """LSH banding over MinHash signatures of character trigrams of a name.

    Attributes
    ----------
    num_perm : int
        Number of MinHash permutations.
    bands : int
        Number of LSH bands.
    """

    def __init__(
        self,
        field: str = "name",
        num_perm: int = MINHASH_NUM_PERM,
        bands: int = MINHASH_BANDS,
        min_tokens: int = MINHASH_MIN_TOKENS,
    ) -> None:
        if num_perm % bands:
            raise ValueError(f"num_perm ({num_perm}) must be divisible by bands ({bands})")
        self.field = field
        self.num_perm = num_perm
        self.bands = bands
        self.rows_per_band = num_perm // bands
        self.min_tokens = min_tokens
        self.name = f"minhash_name:{field}"
        self.match_key = field

    def block_keys(self, record: Record) -> Iterable[str]:
        """Yield one band-hash key per LSH band."""
        tokens = name_tokens(record.get(self.field), min_len=1)
        if len(tokens) < self.min_tokens:
            return

        mh = MinHash(num_perm=self.num_perm, seed=MINHASH_SEED)
        for shingle in _trigrams(" ".join(tokens)):
            mh.update(shingle.encode("utf-8"))

        hv = mh.hashvalues
        for band in range(self.bands):
            start = band * self.rows_per_band
            band_bytes = ",".join(map(str, hv[start : start + self.rows_per_band]))
            band_hash = hashlib.sha256(band_bytes.encode("utf-8")).hexdigest()[:16]
            yield f"mh:b{band}:{band_hash}"


def _trigrams(text: str) -> set[str]:
    """Character trigrams of *text*; short strings yield themselves."""
    if len(text) < 3:
        return {text}
    return {text[i : i + 3] for i in range(len(text) - 2)}
