import pytest

from vault_intents.core.errors import EncodingError, ProofNotFound, TransactionHashMismatch
from vault_intents.core.intent import Intent, IntentEncoder, keccak256
from vault_intents.core.merkle import IntentMerkleTree, hash_pair
from vault_intents.core.optimistic import OptimisticValidationWindow
from vault_intents.programs.system import SystemProgram

from conftest import key


def leaves(n):
    return [keccak256(bytes([i])) for i in range(n)]


@pytest.mark.parametrize("n", [1, 2, 3, 5, 8])
def test_every_leaf_verifies(n):
    tree = IntentMerkleTree(leaves(n))
    for leaf in leaves(n):
        assert IntentMerkleTree.verify(tree.root, leaf, tree.proof(leaf))


def test_single_leaf_is_root():
    leaf = keccak256(b"only")
    tree = IntentMerkleTree([leaf])
    assert tree.root == leaf
    assert tree.proof(leaf) == []


def test_two_leaf_root_is_sorted_pair_hash():
    a, b = leaves(2)
    expected = keccak256(min(a, b) + max(a, b))
    assert IntentMerkleTree([a, b]).root == expected
    assert IntentMerkleTree([b, a]).root == expected
    assert hash_pair(a, b) == hash_pair(b, a) == expected


def test_tree_layout():
    tree = IntentMerkleTree(leaves(3))
    assert len(tree.tree) == 5
    # leaves sorted ascending, stored at the tail in reverse order
    assert tree.tree[2:] == list(reversed(sorted(leaves(3))))
    assert tree.tree[1] == hash_pair(tree.tree[3], tree.tree[4])


def test_non_member_raises():
    tree = IntentMerkleTree(leaves(4))
    with pytest.raises(ProofNotFound):
        tree.proof(keccak256(b"stranger"))


def test_wrong_proof_does_not_verify():
    tree = IntentMerkleTree(leaves(4))
    a, b = leaves(2)
    assert not IntentMerkleTree.verify(tree.root, b, tree.proof(a))


def test_leaves_must_be_digests():
    with pytest.raises(EncodingError):
        IntentMerkleTree([])
    with pytest.raises(EncodingError):
        IntentMerkleTree([b"raw intent bytes"])


def test_render_lists_every_node():
    tree = IntentMerkleTree(leaves(3))
    rendered = tree.render()
    assert rendered.splitlines()[0] == f"0) 0x{tree.root.hex()}"
    assert len(rendered.splitlines()) == 5


def test_substituted_operations_are_rejected(vault):
    encoder = IntentEncoder(vault)
    intent_a = Intent(nonce=3, operations=[SystemProgram.transfer(vault, key("alice"), 10)])
    intent_b = Intent(nonce=3, operations=[SystemProgram.transfer(vault, key("mallory"), 10)])
    digest_a = encoder.encode(intent_a).digest
    digest_b = encoder.encode(intent_b).digest

    tree = IntentMerkleTree([digest_a, digest_b])
    proof_a = tree.proof(digest_a)
    assert IntentMerkleTree.verify(tree.root, digest_a, proof_a)

    # B's operations presented with A's authorization
    assert not IntentMerkleTree.verify(tree.root, digest_b, proof_a)
    window = OptimisticValidationWindow(target_hash=digest_a, max_slot=100, fee_payer=key("payer"))
    window.check_executable(50, digest_a)
    with pytest.raises(TransactionHashMismatch):
        window.check_executable(50, digest_b)
