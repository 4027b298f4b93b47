from pathlib import Path

import pytest

from terrafarm.config import (
    _deep_merge,
    check_environment,
    get_data_dir,
    load_config,
    parse_minutes,
    resolve_preferences,
)
from terrafarm.constants import DEFAULT_DATA_DIR
from terrafarm.digitalocean.ssh import compute_fingerprint
from terrafarm.exceptions import ConfigurationError
from tests.conftest import PUBLIC_KEY_BLOB, TOKEN

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


class TestDeepMerge:
    def test_shallow_override(self):
        assert _deep_merge({"ttl": 10, "user": "a"}, {"ttl": 20}) == {"ttl": 20, "user": "a"}

    def test_nested_merge(self):
        base = {"farm": {"region": "fra1", "size": "16gb"}}
        override = {"farm": {"region": "ams3"}}
        assert _deep_merge(base, override) == {"farm": {"region": "ams3", "size": "16gb"}}

    def test_empty_override(self):
        assert _deep_merge({"a": 1}, {}) == {"a": 1}


class TestLoadConfig:
    def test_project_overrides_global(self, tmp_path: Path):
        global_toml = tmp_path / "config.toml"
        global_toml.write_text('region = "fra1"\nuser = "global"\n')
        project_dir = tmp_path / "project"
        project_dir.mkdir()
        (project_dir / ".terrafarm.toml").write_text('region = "ams3"\n')

        result = load_config(project_dir=project_dir, global_path=global_toml)

        assert result == {"region": "ams3", "user": "global"}

    def test_no_files(self, tmp_path: Path):
        assert load_config(project_dir=tmp_path, global_path=tmp_path / "missing.toml") == {}

    def test_malformed_file(self, tmp_path: Path):
        (tmp_path / ".terrafarm.toml").write_text("region = ")
        with pytest.raises(ConfigurationError, match="Can't read preferences file"):
            load_config(project_dir=tmp_path, global_path=tmp_path / "missing.toml")


class TestParseMinutes:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("3h", 180),
            ("1h30m", 90),
            ("1d", 1440),
            (45, 45),
            ("120", 2),
            ("0", 0),
            (0, 0),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_minutes(value, "ttl") == expected

    @pytest.mark.parametrize("value", ["30s", "59", "abc", "-5", True, -1])
    def test_invalid(self, value):
        with pytest.raises(ConfigurationError, match="Incorrect ttl property"):
            parse_minutes(value, "ttl")


class TestResolvePreferences:
    def _resolve(self, tmp_path: Path, data_dir: Path, **kwargs):
        kwargs.setdefault("env", {})
        kwargs.setdefault("project_dir", tmp_path)
        kwargs.setdefault("global_path", tmp_path / "missing.toml")
        return resolve_preferences(data_dir=data_dir, **kwargs)

    def test_defaults(self, tmp_path: Path, data_dir: Path):
        prefs = self._resolve(tmp_path, data_dir, validate=False)

        assert prefs.ttl == 240
        assert prefs.max_wait == 0
        assert prefs.region == "fra1"
        assert prefs.node_size == "16gb"
        assert prefs.user == "builder"
        assert prefs.template == "c6-multiarch"
        assert len(prefs.password) == 18

    def test_generated_passwords_differ(self, tmp_path: Path, data_dir: Path):
        first = self._resolve(tmp_path, data_dir, validate=False)
        second = self._resolve(tmp_path, data_dir, validate=False)
        assert first.password != second.password

    def test_precedence(self, tmp_path: Path, data_dir: Path):
        global_toml = tmp_path / "config.toml"
        global_toml.write_text('ttl = 10\nregion = "nyc1"\nuser = "global"\nnode-size = "8gb"\n')
        (tmp_path / ".terrafarm.toml").write_text('ttl = "2h"\nregion = "ams3"\nuser = "project"\n')
        env = {"TERRAFARM_TTL": "3h", "TERRAFARM_REGION": "sfo2"}

        prefs = self._resolve(
            tmp_path,
            data_dir,
            env=env,
            global_path=global_toml,
            overrides={"ttl": "4h", "region": None},
            validate=False,
        )

        assert prefs.ttl == 240
        assert prefs.region == "sfo2"
        assert prefs.user == "project"
        assert prefs.node_size == "8gb"

    def test_key_aliases(self, tmp_path: Path, data_dir: Path):
        (tmp_path / ".terrafarm.toml").write_text('maxwait = "1h"\nnode_size = "32gb"\n')
        prefs = self._resolve(tmp_path, data_dir, validate=False)
        assert prefs.max_wait == 60
        assert prefs.node_size == "32gb"

    def test_unknown_key(self, tmp_path: Path, data_dir: Path):
        (tmp_path / ".terrafarm.toml").write_text('colour = "blue"\n')
        with pytest.raises(ConfigurationError, match="Unknown property colour"):
            self._resolve(tmp_path, data_dir, validate=False)

    def test_valid_preferences(self, tmp_path: Path, data_dir: Path, key_file: Path):
        env = {"TERRAFARM_TOKEN": TOKEN, "TERRAFARM_KEY": str(key_file)}

        prefs = self._resolve(tmp_path, data_dir, env=env)

        assert prefs.token == TOKEN
        assert prefs.fingerprint == compute_fingerprint(f"ssh-rsa {PUBLIC_KEY_BLOB}")

    def test_collects_every_error(self, tmp_path: Path, data_dir: Path):
        env = {"TERRAFARM_TOKEN": "short", "TERRAFARM_TEMPLATE": "missing"}

        with pytest.raises(ConfigurationError) as exc_info:
            self._resolve(tmp_path, data_dir, env=env)

        errors = exc_info.value.errors
        assert "Property token is misformatted" in errors
        assert "Property key must be set" in errors
        assert "Directory with template missing does not exist" in errors

    def test_missing_key_files(self, tmp_path: Path, data_dir: Path):
        env = {"TERRAFARM_TOKEN": TOKEN, "TERRAFARM_KEY": str(tmp_path / "nope")}

        with pytest.raises(ConfigurationError) as exc_info:
            self._resolve(tmp_path, data_dir, env=env)

        assert any("Private key file" in e for e in exc_info.value.errors)
        assert any("Public key file" in e for e in exc_info.value.errors)

    def test_bad_duration_in_env(self, tmp_path: Path, data_dir: Path):
        with pytest.raises(ConfigurationError, match="environment variables"):
            self._resolve(tmp_path, data_dir, env={"TERRAFARM_MAX_WAIT": "10s"}, validate=False)


class TestEnvironment:
    def test_data_dir_from_env(self, tmp_path: Path):
        assert get_data_dir({"TERRAFARM_DATA": str(tmp_path)}) == tmp_path

    def test_default_data_dir(self):
        assert get_data_dir({}) == DEFAULT_DATA_DIR

    def test_missing_data_dir_and_binary(self, tmp_path: Path):
        with pytest.raises(ConfigurationError) as exc_info:
            check_environment(tmp_path / "missing", terraform="terraform-binary-that-does-not-exist")

        assert len(exc_info.value.errors) == 2
