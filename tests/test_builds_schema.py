"""Tests for builds/schema.py and builds/io.py modules."""

import json

import pytest
from pydantic import ValidationError

from buildstash.builds.io import load_build_config
from buildstash.builds.schema import BuildArg, BuildConfig, ExportTarget
from buildstash.errors import InvalidConfig


class TestExportTarget:
    """Tests for ExportTarget model."""

    def test_shorthand(self):
        """Should expand the single-key shorthand form."""
        target = ExportTarget.model_validate({"cacheonly": {}})

        assert target.type == "cacheonly"
        assert target.attrs == ()
        assert target.to_output() == "type=cacheonly"

    def test_attrs_sorted(self):
        """Should store attributes sorted and render them in order."""
        target = ExportTarget.model_validate(
            {"type": "local", "attrs": {"dest": "out", "compression": "gzip"}}
        )

        assert target.attrs == (("compression", "gzip"), ("dest", "out"))
        assert target.to_output() == "type=local,compression=gzip,dest=out"

    def test_extra_fields_rejected(self):
        """Should forbid unknown fields."""
        with pytest.raises(ValidationError):
            ExportTarget.model_validate({"type": "local", "dest": "out"})


class TestBuildConfig:
    """Tests for BuildConfig model."""

    def test_mapping_build_args(self):
        """Should accept build arguments as a mapping, keeping order."""
        config = BuildConfig(
            context=".",
            dockerfile="Dockerfile",
            build_args={"B": "2", "A": "1"},
        )

        assert config.arg_names() == ["B", "A"]
        assert config.public_args() == {"B": "2", "A": "1"}

    def test_list_build_args(self):
        """Should accept build arguments as name/value entries."""
        config = BuildConfig(
            context=".",
            dockerfile="Dockerfile",
            build_args=[{"name": "A", "value": "1"}],
        )
        assert config.build_args == (BuildArg(name="A", value="1"),)

    def test_numeric_values_same_in_both_forms(self):
        """Numbers should become strings whichever form declares them."""
        as_mapping = BuildConfig(
            context=".",
            dockerfile="Dockerfile",
            build_args={"AWS_ACCOUNT_ID": 1234567890},
        )
        as_list = BuildConfig(
            context=".",
            dockerfile="Dockerfile",
            build_args=[{"name": "AWS_ACCOUNT_ID", "value": 1234567890}],
        )

        assert as_mapping.build_args == as_list.build_args
        assert as_list.public_args() == {"AWS_ACCOUNT_ID": "1234567890"}

    def test_location_objects(self):
        """Should unwrap {location: ...} locators and camelCase keys."""
        config = BuildConfig.model_validate(
            {
                "context": {"location": "../"},
                "dockerfile": {"location": "../Dockerfile"},
                "buildArgs": {"AWS_REGION": "us-east-1"},
            }
        )

        assert config.context == "../"
        assert config.dockerfile == "../Dockerfile"
        assert config.public_args() == {"AWS_REGION": "us-east-1"}

    def test_hashable(self):
        """Equal configs should hash equally."""
        a = BuildConfig(context=".", dockerfile="Dockerfile", tags=["x"])
        b = BuildConfig(context=".", dockerfile="Dockerfile", tags=["x"])

        assert a == b
        assert hash(a) == hash(b)
        assert len({a, b}) == 1

    def test_frozen(self):
        """Should not allow mutation."""
        config = BuildConfig(context=".", dockerfile="Dockerfile")
        with pytest.raises(ValidationError):
            config.context = "other"

    def test_with_build_arg(self):
        """Should append a build argument without touching the original."""
        config = BuildConfig(context=".", dockerfile="Dockerfile", build_args={"A": "1"})
        changed = config.with_build_arg("B", "2")

        assert changed.arg_names() == ["A", "B"]
        assert config.arg_names() == ["A"]


class TestLoadBuildConfig:
    """Tests for load_build_config function."""

    def test_load_yaml(self, tmp_path):
        """Should load a YAML config."""
        path = tmp_path / "app.yaml"
        path.write_text(
            """
context:
  location: ../
dockerfile:
  location: ../Dockerfile
buildArgs:
  AWS_REGION: us-east-1
tags:
  - app:fixed
exports:
  - cacheonly: {}
"""
        )

        config = load_build_config(path)

        assert config.context == "../"
        assert config.tags == ("app:fixed",)
        assert config.exports[0].type == "cacheonly"

    def test_load_yaml_list_args_with_numbers(self, tmp_path):
        """Unquoted numeric values in list-form args should load."""
        path = tmp_path / "app.yaml"
        path.write_text(
            """
context: .
dockerfile: Dockerfile
build_args:
  - name: AWS_ACCOUNT_ID
    value: 1234567890
"""
        )

        config = load_build_config(path)
        assert config.public_args() == {"AWS_ACCOUNT_ID": "1234567890"}

    def test_load_json(self, tmp_path):
        """Should load a JSON config."""
        path = tmp_path / "app.json"
        path.write_text(json.dumps({"context": ".", "dockerfile": "Dockerfile"}))

        config = load_build_config(path)
        assert config.dockerfile == "Dockerfile"

    def test_missing_file(self, tmp_path):
        """Should report a missing file as InvalidConfig."""
        with pytest.raises(InvalidConfig):
            load_build_config(tmp_path / "missing.yaml")

    def test_not_a_mapping(self, tmp_path):
        """Should reject a YAML list."""
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(InvalidConfig, match="mapping"):
            load_build_config(path)

    def test_validation_error(self, tmp_path):
        """Should wrap validation errors."""
        path = tmp_path / "bad.yaml"
        path.write_text("context: .\n")

        with pytest.raises(InvalidConfig, match="Invalid build config"):
            load_build_config(path)

    def test_invalid_yaml(self, tmp_path):
        """Should wrap YAML parse errors."""
        path = tmp_path / "broken.yaml"
        path.write_text("context: [unclosed\n")

        with pytest.raises(InvalidConfig, match="Cannot read"):
            load_build_config(path)
