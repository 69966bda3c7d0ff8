"""Tests for namespace authority resolution."""

from __future__ import annotations

import logging

import pytest

from lumigo_operator.registry import NamespaceRegistry, authority_key, is_being_deleted, select_authoritative


def lumigo(name: str, created: str | None = "2024-01-01T00:00:00Z", deleting: bool = False) -> dict:
    metadata = {"name": name, "namespace": "default"}
    if created is not None:
        metadata["creationTimestamp"] = created
    if deleting:
        metadata["deletionTimestamp"] = "2024-06-01T00:00:00Z"
    return {"metadata": metadata}


class TestSelectAuthoritative:
    """Test select_authoritative."""

    def test_none_without_candidates(self) -> None:
        assert select_authoritative([]) is None

    def test_oldest_wins(self) -> None:
        candidates = [lumigo("b", "2024-01-02T00:00:00Z"), lumigo("a", "2024-01-03T00:00:00Z")]

        assert select_authoritative(candidates)["metadata"]["name"] == "b"

    def test_ties_broken_by_name(self) -> None:
        candidates = [lumigo("zeta"), lumigo("alpha"), lumigo("mid")]

        assert select_authoritative(candidates)["metadata"]["name"] == "alpha"

    def test_deleting_instances_are_not_eligible(self) -> None:
        candidates = [lumigo("old", "2023-01-01T00:00:00Z", deleting=True), lumigo("new")]

        assert select_authoritative(candidates)["metadata"]["name"] == "new"

    def test_missing_timestamp_sorts_last(self) -> None:
        candidates = [lumigo("a", None), lumigo("b")]

        assert select_authoritative(candidates)["metadata"]["name"] == "b"

    def test_helpers(self) -> None:
        assert is_being_deleted(lumigo("a", deleting=True))
        assert authority_key(lumigo("a"))[1] == "a"


class TestNamespaceRegistry:
    """Test NamespaceRegistry."""

    def test_resolve(self) -> None:
        registry = NamespaceRegistry()

        assert registry.resolve_authoritative("default", [lumigo("b"), lumigo("a")]) == "a"
        assert registry.resolve_authoritative("other", []) is None

    def test_logs_hand_over(self, caplog: pytest.LogCaptureFixture) -> None:
        registry = NamespaceRegistry()
        registry.resolve_authoritative("default", [lumigo("a"), lumigo("b")])

        with caplog.at_level(logging.INFO, logger="lumigo_operator.registry"):
            registry.resolve_authoritative("default", [lumigo("a", deleting=True), lumigo("b")])

        assert "changed from a to b" in caplog.text

    @pytest.mark.parametrize(
        ("name", "expected"),
        [("a", True), ("b", False)],
    )
    def test_was_authoritative_while_deleting(self, name: str, expected: bool) -> None:
        registry = NamespaceRegistry()
        candidates = [lumigo("a", deleting=name == "a"), lumigo("b", deleting=name == "b")]

        assert registry.was_authoritative("default", name, candidates) is expected

    def test_was_authoritative_unknown_instance(self) -> None:
        assert not NamespaceRegistry().was_authoritative("default", "x", [lumigo("a")])

    def test_forget(self) -> None:
        registry = NamespaceRegistry()
        registry.resolve_authoritative("default", [lumigo("a")])
        registry.forget("default")
        registry.forget("never-seen")
