"""Tests for repository name validation, artifact keys and safe_join."""

import pytest

from zenith.core.errors import ValidationError
from zenith.core.names import (
    ArtifactKey,
    build_object_name,
    safe_join,
    source_object_name,
    validate_repo_name,
)


class TestValidateRepoName:
    @pytest.mark.parametrize("name", ["widget", "my-app", "app_2", "v1.2.3", "Widget.js"])
    def test_accepts_plain_names(self, name):
        assert validate_repo_name(name) == name

    @pytest.mark.parametrize(
        "name",
        ["", "   ", "a/b", "../etc", "..", "a\\b", "foo..bar", "nul\x00byte", "/abs", "-rf", "--help"],
    )
    def test_rejects_unsafe_names(self, name):
        with pytest.raises(ValidationError):
            validate_repo_name(name)


class TestArtifactNames:
    def test_source_and_build_suffixes(self):
        assert source_object_name("widget") == "widget.zip"
        assert build_object_name("widget") == "widget-build.zip"

    def test_keys_are_rebuilt_from_name(self):
        assert ArtifactKey.source("zenith123", "widget") == ArtifactKey("zenith123", "widget.zip")
        assert ArtifactKey.build("zenith123", "widget") == ArtifactKey("zenith123", "widget-build.zip")

    def test_str_is_bucket_slash_name(self):
        assert str(ArtifactKey.build("b", "w")) == "b/w-build.zip"

    def test_key_rejects_unsafe_name(self):
        with pytest.raises(ValidationError):
            ArtifactKey.source("zenith123", "../widget")


class TestSafeJoin:
    def test_inside_root(self, tmp_path):
        assert safe_join(tmp_path, "a", "b.txt") == (tmp_path / "a" / "b.txt").resolve()

    def test_root_itself_is_allowed(self, tmp_path):
        assert safe_join(tmp_path) == tmp_path.resolve()

    @pytest.mark.parametrize("part", ["../outside", "a/../../outside", "/etc/passwd"])
    def test_escape_is_rejected(self, tmp_path, part):
        with pytest.raises(ValidationError):
            safe_join(tmp_path, part)

    def test_symlink_escape_is_rejected(self, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        root = tmp_path / "root"
        root.mkdir()
        (root / "link").symlink_to(outside)

        with pytest.raises(ValidationError):
            safe_join(root, "link", "secret.txt")

    def test_null_byte_is_rejected(self, tmp_path):
        with pytest.raises(ValidationError, match="null byte"):
            safe_join(tmp_path, "a\x00b")
