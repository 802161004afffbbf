"""Tests for the translation path filter."""

import pytest

from src.translation.path_filter import (
    filter_paths,
    glob_to_regex,
    in_skipped_directory,
    match_path,
)


class TestGlobToRegex:
    def test_double_star_crosses_segments(self):
        assert match_path("docs/a/b/c.md", "docs/**")

    def test_single_star_stays_in_segment(self):
        assert match_path("docs/a.md", "docs/*.md")
        assert not match_path("docs/sub/a.md", "docs/*.md")

    def test_match_is_anchored(self):
        assert not match_path("other/docs/a.md", "docs/**")
        assert not match_path("docs/a.md.bak", "docs/*.md")

    def test_literal_characters_are_escaped(self):
        assert not match_path("docsXa.md", "docs.a.md")
        assert match_path("docs/v1+2.md", "docs/v1+2.md")
        assert glob_to_regex("a.b").pattern == r"a\.b"


class TestFilterPaths:
    def test_only_markdown_survives(self):
        paths = ["a.md", "b.mdx", "c.txt", "d.MD", "e.md.orig"]
        assert filter_paths(paths) == ["a.md", "b.mdx"]

    def test_output_directory_is_never_input(self):
        paths = ["translations/en/a.md", "docs/translations.md"]
        assert filter_paths(paths) == ["docs/translations.md"]

    def test_skip_directories(self):
        paths = ["node_modules/x.md", "pkg/node_modules/y.md", "docs/介绍.md"]
        assert filter_paths(paths) == ["docs/介绍.md"]
        assert in_skipped_directory("dist/readme.md")
        assert not in_skipped_directory("dist.md")

    def test_include_restricts(self):
        paths = ["guide.md", "docs/setup.md"]
        assert filter_paths(paths, include_patterns=["docs/**"]) == ["docs/setup.md"]

    def test_exclude_wins_over_include(self):
        paths = ["docs/setup.md", "docs/internal/notes.md"]
        result = filter_paths(
            paths,
            include_patterns=["docs/**"],
            exclude_patterns=["docs/internal/**"],
        )
        assert result == ["docs/setup.md"]

    def test_empty_include_means_no_restriction(self):
        assert filter_paths(["a.md"], include_patterns=[]) == ["a.md"]

    def test_preserves_order_and_dedupes(self):
        assert filter_paths(["b.md", "a.md", "b.md"]) == ["b.md", "a.md"]

    @pytest.mark.parametrize("paths", [
        ["a.md", "b.txt", "translations/ja/c.md", "build/d.md"],
        ["x/y/z.mdx", "x/y/z.md", "README"],
    ])
    def test_result_is_subset_of_input(self, paths):
        result = filter_paths(paths)
        assert set(result) <= set(paths)
        assert all(p.endswith((".md", ".mdx")) for p in result)
        assert not any(p.startswith("translations/") for p in result)
