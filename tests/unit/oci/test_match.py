"""Unit tests for descriptor matchers.

Tests cover:
- Individual digest, name and annotation predicates
- Conjunctive composition through matches_all
- Order-preserving filtering, including the empty matcher set
- Compilation of CLI criteria and invalid arguments
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from ocipush.oci.errors import InvalidDigestError, InvalidMatchSpecError
from ocipush.oci.match import (
    AnnotationMatcher,
    DigestMatcher,
    Matcher,
    NameMatcher,
    build_matchers,
    digest_matcher,
    filter_descriptors,
    matches_all,
    parse_annotation_spec,
)
from ocipush.schemas.oci import ANNOTATION_REF_NAME, OCI_IMAGE_MANIFEST, Descriptor


def _descriptor(char: str, **annotations: str) -> Descriptor:
    return Descriptor(
        media_type=OCI_IMAGE_MANIFEST,
        digest="sha256:" + char * 64,
        size=100,
        annotations=annotations or None,
    )


@pytest.fixture
def descriptors() -> list[Descriptor]:
    """Four descriptors with overlapping annotations."""
    return [
        _descriptor("a", foo="bar", baz="qux", **{ANNOTATION_REF_NAME: "v1"}),
        _descriptor("b", foo="bar"),
        _descriptor("c", baz="qux"),
        _descriptor("d"),
    ]


class TestPredicates:
    """Tests for the individual matchers."""

    @pytest.mark.requirement("match-digest")
    def test_digest_matcher(self, descriptors: list[Descriptor]) -> None:
        """Test DigestMatcher accepts only the named digest."""
        matcher = digest_matcher("sha256:" + "b" * 64)

        assert [matcher(d) for d in descriptors] == [False, True, False, False]

    @pytest.mark.requirement("match-digest")
    def test_digest_matcher_rejects_bad_digest(self) -> None:
        """Test a malformed digest string is rejected when compiled."""
        with pytest.raises(InvalidDigestError):
            digest_matcher("sha256:nothex")

    @pytest.mark.requirement("match-digest")
    def test_trailing_newline_rejected(self) -> None:
        """Test a digest followed by a newline is rejected, not normalised."""
        with pytest.raises(InvalidDigestError):
            digest_matcher("sha256:" + "a" * 64 + "\n")
        with pytest.raises(InvalidDigestError):
            build_matchers(digest="sha256:" + "a" * 64 + "\n")
        with pytest.raises(ValidationError):
            Descriptor(
                media_type=OCI_IMAGE_MANIFEST, digest="sha256:" + "a" * 64 + "\n", size=1
            )

    @pytest.mark.requirement("match-name")
    def test_name_matcher(self, descriptors: list[Descriptor]) -> None:
        """Test NameMatcher checks the ref.name annotation."""
        matcher = NameMatcher(value="v1")

        assert matcher.key == ANNOTATION_REF_NAME
        assert [matcher(d) for d in descriptors] == [True, False, False, False]

    @pytest.mark.requirement("match-annotation")
    def test_annotation_matcher_requires_exact_value(self) -> None:
        """Test the value must match exactly, not just the key."""
        matcher = AnnotationMatcher(key="foo", value="bar")

        assert matcher(_descriptor("a", foo="bar"))
        assert not matcher(_descriptor("a", foo="barn"))
        assert not matcher(_descriptor("a"))

    @pytest.mark.requirement("match-annotation")
    def test_matchers_satisfy_protocol(self) -> None:
        """Test every matcher implements the Matcher protocol."""
        for matcher in (
            DigestMatcher(()),
            NameMatcher(value="x"),
            AnnotationMatcher(key="k", value="v"),
        ):
            assert isinstance(matcher, Matcher)


class TestAnnotationSpec:
    """Tests for key=value parsing."""

    @pytest.mark.requirement("match-annotation")
    def test_splits_on_first_equals(self) -> None:
        """Test values may themselves contain '='."""
        matcher = parse_annotation_spec("query=a=b")

        assert matcher == AnnotationMatcher(key="query", value="a=b")

    @pytest.mark.requirement("match-annotation")
    def test_empty_value_allowed(self) -> None:
        """Test 'key=' matches an empty annotation value."""
        assert parse_annotation_spec("key=") == AnnotationMatcher(key="key", value="")

    @pytest.mark.requirement("match-annotation")
    def test_missing_equals(self) -> None:
        """Test a spec without '=' raises InvalidMatchSpecError."""
        with pytest.raises(InvalidMatchSpecError) as exc_info:
            parse_annotation_spec("foobar")

        assert str(exc_info.value) == 'match-annotation "foobar" is missing a "=" sign'
        assert exc_info.value.exit_code == 2


class TestBuildMatchers:
    """Tests for build_matchers."""

    @pytest.mark.requirement("match-compose")
    def test_no_criteria(self) -> None:
        """Test no criteria yields no matchers."""
        assert build_matchers() == []

    @pytest.mark.requirement("match-compose")
    def test_criteria_order(self) -> None:
        """Test matchers are built digest, name, then annotations."""
        digest = "sha256:" + "a" * 64

        matchers = build_matchers(digest=digest, name="v1", annotations=["foo=bar", "baz=qux"])

        assert [type(m) for m in matchers] == [
            DigestMatcher,
            NameMatcher,
            AnnotationMatcher,
            AnnotationMatcher,
        ]

    @pytest.mark.requirement("match-compose")
    def test_invalid_annotation_propagates(self) -> None:
        """Test an invalid annotation spec fails compilation."""
        with pytest.raises(InvalidMatchSpecError):
            build_matchers(annotations=["foo=bar", "broken"])


class TestFiltering:
    """Tests for matches_all and filter_descriptors."""

    @pytest.mark.requirement("match-filter-identity")
    def test_empty_matchers_is_identity(self, descriptors: list[Descriptor]) -> None:
        """Test filtering with no matchers keeps every descriptor in order."""
        assert filter_descriptors(descriptors, []) == descriptors

    @pytest.mark.requirement("match-conjunction")
    def test_annotations_are_conjunctive(self, descriptors: list[Descriptor]) -> None:
        """Test foo=bar plus baz=qux keeps only descriptors carrying both."""
        matchers = build_matchers(annotations=["foo=bar", "baz=qux"])

        kept = filter_descriptors(descriptors, matchers)

        assert kept == [descriptors[0]]

    @pytest.mark.requirement("match-filter-order")
    def test_result_is_ordered_subsequence(self, descriptors: list[Descriptor]) -> None:
        """Test the result preserves order and satisfies every matcher."""
        matchers = build_matchers(annotations=["baz=qux"])

        kept = filter_descriptors(descriptors, matchers)

        assert kept == [descriptors[0], descriptors[2]]
        assert all(matches_all(d, matchers) for d in kept)
        positions = [descriptors.index(d) for d in kept]
        assert positions == sorted(positions)

    @pytest.mark.requirement("match-conjunction")
    def test_matches_all_short_circuits(self) -> None:
        """Test evaluation stops at the first rejecting matcher."""
        calls: list[str] = []

        def reject(descriptor: Descriptor) -> bool:
            calls.append("reject")
            return False

        def accept(descriptor: Descriptor) -> bool:
            calls.append("accept")
            return True

        assert not matches_all(_descriptor("a"), [reject, accept])
        assert calls == ["reject"]

    @pytest.mark.requirement("match-conjunction")
    def test_no_descriptor_matches(self, descriptors: list[Descriptor]) -> None:
        """Test contradictory criteria keep nothing."""
        matchers = build_matchers(digest="sha256:" + "d" * 64, name="v1")

        assert filter_descriptors(descriptors, matchers) == []
