"""
Intent Merkle Tree

One passkey signature over a Merkle root authorizes every intent under it.
Each execution then carries the inclusion proof of its own intent hash.

The layout matches OpenZeppelin's SimpleMerkleTree so that proofs produced
here verify in the on-chain program:
- Leaves are 32-byte intent digests, used as-is and sorted ascending
- The tree is a flat array of 2n-1 nodes with the leaves at the tail in
  reverse order
- Each inner node hashes its children as keccak256(min ++ max)

Based on: https://github.com/OpenZeppelin/merkle-tree
"""

from typing import List, Sequence

from .errors import EncodingError, ProofNotFound
from .intent import keccak256


def hash_pair(a: bytes, b: bytes) -> bytes:
    return keccak256(a + b) if a <= b else keccak256(b + a)


class IntentMerkleTree:
    """Merkle tree over pre-hashed intents."""

    def __init__(self, leaves: Sequence[bytes]):
        if not leaves:
            raise EncodingError("A Merkle tree needs at least one leaf")
        for leaf in leaves:
            if not isinstance(leaf, (bytes, bytearray)) or len(leaf) != 32:
                raise EncodingError("Merkle leaves must be 32-byte intent digests")

        self.leaves = sorted(bytes(leaf) for leaf in leaves)

        size = 2 * len(self.leaves) - 1
        tree: List[bytes] = [b""] * size
        for i, leaf in enumerate(self.leaves):
            tree[size - 1 - i] = leaf
        for i in range(size - 1 - len(self.leaves), -1, -1):
            tree[i] = hash_pair(tree[2 * i + 1], tree[2 * i + 2])
        self.tree = tree

    @property
    def root(self) -> bytes:
        return self.tree[0]

    def proof(self, leaf: bytes) -> List[bytes]:
        try:
            index = self.tree.index(bytes(leaf), len(self.tree) - len(self.leaves))
        except ValueError:
            raise ProofNotFound(f"Leaf {bytes(leaf).hex()} is not in the tree") from None

        proof = []
        while index > 0:
            sibling = index + 1 if index % 2 else index - 1
            proof.append(self.tree[sibling])
            index = (index - 1) // 2
        return proof

    @staticmethod
    def verify(root: bytes, leaf: bytes, proof: Sequence[bytes]) -> bool:
        node = bytes(leaf)
        for sibling in proof:
            node = hash_pair(node, bytes(sibling))
        return node == root

    def render(self) -> str:
        """Indented dump of the tree, root first."""
        lines = []
        stack = [(0, 0)]
        while stack:
            index, depth = stack.pop()
            lines.append(f"{'  ' * depth}{index}) 0x{self.tree[index].hex()}")
            left = 2 * index + 1
            if left < len(self.tree):
                stack.append((left + 1, depth + 1))
                stack.append((left, depth + 1))
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self.leaves)
