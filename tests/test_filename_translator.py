"""Tests for the filename transliterator."""

import pytest

from src.translation.filename_translator import (
    contains_non_ascii,
    get_translated_path,
    translate_filename,
    translate_segment,
)


class TestTranslateFilename:
    def test_exact_lookup(self):
        assert translate_filename("介绍.md") == "Introduction.md"

    def test_directories_are_translated(self):
        assert translate_filename("docs/教程/安装.md") == "docs/Tutorial/Installation.md"

    def test_substring_substitution_keeps_remainder(self):
        assert translate_filename("安装v2.md") == "Installationv2.md"

    def test_fallback_strips_non_ascii(self):
        assert translate_filename("über-uns.md") == "ber-uns.md"

    def test_generic_names(self):
        assert translate_filename("ÄÖÜ.md") == "document.md"
        assert translate_filename("ÄÖÜ/readme.md") == "folder/readme.md"

    def test_extension_preserved(self):
        assert translate_filename("docs/介绍.mdx").endswith(".mdx")

    def test_dotfile_has_no_extension(self):
        assert translate_filename(".介绍") == ".Introduction"

    @pytest.mark.parametrize("path", [
        "README.md", "docs/getting-started.md", "a/b/c.mdx", "plain",
    ])
    def test_ascii_path_is_identity(self, path):
        assert translate_filename(path) == path

    @pytest.mark.parametrize("path", [
        "docs/介绍.md", "教程/快速开始.md", "über/ÄÖÜ.md", "指南-更新日志.md",
    ])
    def test_idempotent_and_ascii(self, path):
        once = translate_filename(path)
        assert not contains_non_ascii(once)
        assert translate_filename(once) == once


class TestTranslateSegment:
    def test_mixed_terms_and_unknown_text(self):
        result = translate_segment("安装ÄÖ", "document")
        assert result == "Installation"


class TestGetTranslatedPath:
    def test_target_language_is_transliterated(self):
        assert (
            get_translated_path("docs/介绍.md", "en", "zh-CN")
            == "translations/en/docs/Introduction.md"
        )

    def test_base_language_is_mirrored(self):
        assert (
            get_translated_path("docs/介绍.md", "zh-CN", "zh-CN")
            == "translations/zh-CN/docs/介绍.md"
        )

    def test_custom_output_dir(self):
        assert (
            get_translated_path("a.md", "ja", "en", output_dir="i18n/")
            == "i18n/ja/a.md"
        )
