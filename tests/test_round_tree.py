"""Tests for the round tree — proves inclusion proofs check without the database."""

import pytest

from fairdrop.crypto.round_tree import InclusionProof, RoundTree, verify_inclusion


def _leaf(ch: str) -> str:
    return "sha256:" + ch * 64


class TestRoundTree:
    def test_empty_tree(self) -> None:
        tree = RoundTree()
        assert tree.leaf_count == 0
        assert tree.root.startswith("sha256:")

    def test_single_leaf_is_root(self) -> None:
        tree = RoundTree([_leaf("a")])
        assert tree.root == _leaf("a")

    def test_order_independent(self) -> None:
        """Same leaves produce same root regardless of resolution order."""
        assert RoundTree([_leaf("a"), _leaf("b"), _leaf("c")]).root == \
            RoundTree([_leaf("c"), _leaf("a"), _leaf("b")]).root

    def test_different_leaves_different_roots(self) -> None:
        assert RoundTree([_leaf("a")]).root != RoundTree([_leaf("b")]).root

    def test_accepts_unprefixed_leaves(self) -> None:
        assert RoundTree(["a" * 64]).root == RoundTree([_leaf("a")]).root


class TestInclusionProof:
    @pytest.mark.parametrize("count", [1, 2, 3, 5, 8])
    def test_every_leaf_verifies(self, count: int) -> None:
        leaves = [_leaf(ch) for ch in "0123456789abcdef"[:count]]
        tree = RoundTree(leaves)
        for leaf in leaves:
            proof = tree.inclusion_proof(leaf)
            assert proof is not None
            assert proof.root == tree.root
            assert verify_inclusion(proof)
            assert verify_inclusion(proof, expected_root=tree.root)

    def test_missing_leaf_no_proof(self) -> None:
        assert RoundTree([_leaf("a")]).inclusion_proof(_leaf("b")) is None

    def test_wrong_root_rejected(self) -> None:
        tree = RoundTree([_leaf("a"), _leaf("b")])
        proof = tree.inclusion_proof(_leaf("a"))
        assert not verify_inclusion(proof, expected_root=_leaf("f"))

    def test_tampered_leaf_rejected(self) -> None:
        tree = RoundTree([_leaf("a"), _leaf("b"), _leaf("c")])
        proof = tree.inclusion_proof(_leaf("a"))
        forged = InclusionProof(leaf_hash=_leaf("d"), path=proof.path, root=proof.root)
        assert not verify_inclusion(forged)

    def test_bad_side_marker_rejected(self) -> None:
        tree = RoundTree([_leaf("a"), _leaf("b")])
        proof = tree.inclusion_proof(_leaf("a"))
        bad = InclusionProof(
            leaf_hash=proof.leaf_hash,
            path=[(sibling, "X") for sibling, _ in proof.path],
            root=proof.root,
        )
        assert not verify_inclusion(bad)

    def test_to_dict(self) -> None:
        tree = RoundTree([_leaf("a"), _leaf("b")])
        data = tree.inclusion_proof(_leaf("a")).to_dict()
        assert data["leaf_hash"] == _leaf("a")
        assert data["path"] == [[_leaf("b"), "R"]]
        assert data["root"] == tree.root
