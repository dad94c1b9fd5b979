"""
Tests for Hammer configuration loading.
"""

import json
import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


class TestDefaults:

    @pytest.mark.unit
    def test_standard_layout(self):
        from hammer.config import HammerConfig

        config = HammerConfig()

        assert config.deployments_dir == Path("/btrfs-root/deployments")
        assert config.current_pointer == Path("/btrfs-root/current")
        assert config.keep_deployments == 5
        assert config.name_prefix == "hammer-"
        assert config.container_name == "hammer-container-default"

    @pytest.mark.unit
    def test_paths_are_coerced(self):
        from hammer.config import HammerConfig

        config = HammerConfig(btrfs_top="/mnt/top", lock_file="/tmp/x.lock")
        assert config.deployments_dir == Path("/mnt/top/deployments")
        assert isinstance(config.lock_file, Path)


class TestValidation:

    @pytest.mark.unit
    @pytest.mark.parametrize("keep", [0, -1, "5"])
    def test_bad_retention(self, keep):
        from common.exceptions import InvalidConfigError
        from hammer.config import HammerConfig

        with pytest.raises(InvalidConfigError):
            HammerConfig(keep_deployments=keep)

    @pytest.mark.unit
    def test_relative_top_rejected(self):
        from common.exceptions import InvalidConfigError
        from hammer.config import HammerConfig

        with pytest.raises(InvalidConfigError) as excinfo:
            HammerConfig(btrfs_top="btrfs-root")
        assert excinfo.value.details["field"] == "btrfs_top"

    @pytest.mark.unit
    def test_prefix_must_be_bare(self):
        from common.exceptions import InvalidConfigError
        from hammer.config import HammerConfig

        with pytest.raises(InvalidConfigError):
            HammerConfig(name_prefix="a/b-")

    @pytest.mark.unit
    def test_unknown_key(self):
        from common.exceptions import InvalidConfigError
        from hammer.config import HammerConfig

        with pytest.raises(InvalidConfigError) as excinfo:
            HammerConfig.from_dict({"keep": 3})
        assert "unknown setting" in excinfo.value.message


class TestLoad:

    @pytest.mark.unit
    def test_missing_file_gives_defaults(self, tmp_path):
        from hammer.config import HammerConfig

        config = HammerConfig.load(tmp_path / "absent.json", environ={})
        assert config == HammerConfig()

    @pytest.mark.unit
    def test_file_values(self, tmp_path):
        from hammer.config import HammerConfig

        path = tmp_path / "hammer.json"
        path.write_text(json.dumps({
            "btrfs_top": "/srv/btrfs",
            "keep_deployments": 3,
            "container_image": "debian:testing",
        }))

        config = HammerConfig.load(path, environ={})

        assert config.btrfs_top == Path("/srv/btrfs")
        assert config.keep_deployments == 3
        assert config.container_image == "debian:testing"

    @pytest.mark.unit
    def test_environment_overrides_file(self, tmp_path):
        from hammer.config import HammerConfig

        path = tmp_path / "hammer.json"
        path.write_text(json.dumps({"keep_deployments": 3}))

        config = HammerConfig.load(path, environ={
            "HAMMER_KEEP": "8",
            "HAMMER_CONTAINER_TOOL": "docker",
            "HAMMER_BTRFS_TOP": "/mnt/alt",
        })

        assert config.keep_deployments == 8
        assert config.container_tool == "docker"
        assert config.btrfs_top == Path("/mnt/alt")

    @pytest.mark.unit
    def test_non_integer_keep(self, tmp_path):
        from common.exceptions import InvalidConfigError
        from hammer.config import HammerConfig

        with pytest.raises(InvalidConfigError):
            HammerConfig.load(tmp_path / "absent.json", environ={"HAMMER_KEEP": "many"})

    @pytest.mark.unit
    def test_malformed_json(self, tmp_path):
        from common.exceptions import InvalidConfigError
        from hammer.config import HammerConfig

        path = tmp_path / "hammer.json"
        path.write_text("{not json")

        with pytest.raises(InvalidConfigError):
            HammerConfig.load(path, environ={})

    @pytest.mark.unit
    def test_non_object_json(self, tmp_path):
        from common.exceptions import InvalidConfigError
        from hammer.config import HammerConfig

        path = tmp_path / "hammer.json"
        path.write_text("[1, 2]")

        with pytest.raises(InvalidConfigError):
            HammerConfig.load(path, environ={})
