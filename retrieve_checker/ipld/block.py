"""Content-addressed blocks and their validation."""

from __future__ import annotations

from dataclasses import dataclass

from retrieve_checker.ipld import dag_cbor, dag_pb
from retrieve_checker.ipld.cid import DAG_CBOR, DAG_PB, HASHERS, CID
from retrieve_checker.utils.exceptions import HashMismatchError, UnsupportedHashError


@dataclass(frozen=True)
class Block:
    cid: CID
    data: bytes

    def __len__(self) -> int:
        return len(self.data)


def validate_block(block: Block) -> None:
    """Check that the block's bytes hash to the digest in its CID.

    Raises:
        UnsupportedHashError: the multihash function is not one we compute
        HashMismatchError: the digest does not match

    """
    mh = block.cid.multihash
    hasher = HASHERS.get(mh.code)
    if hasher is None:
        msg = f"multihash code 0x{mh.code:x} is not supported"
        raise UnsupportedHashError(msg, {"cid": str(block.cid)})
    if hasher(block.data) != mh.digest:
        msg = "CID hash does not match bytes"
        raise HashMismatchError(msg, {"cid": str(block.cid)})


def block_links(block: Block) -> list[CID]:
    """Return the CIDs a block links to.

    Raw and unknown codecs have no links. Decoding failures propagate as
    ``IpldError``.
    """
    if block.cid.codec == DAG_PB:
        return [link.hash for link in dag_pb.decode(block.data).links]
    if block.cid.codec == DAG_CBOR:
        return list(dag_cbor.iter_links(dag_cbor.decode(block.data)))
    return []
