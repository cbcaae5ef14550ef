"""
Tests for configuration — environment creation configs and deployer settings.
"""

import textwrap
from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from deployer.core.config.creation import (
    EnvironmentCreationConfig,
    HetznerProvider,
    LxdProvider,
    load_creation_config,
)
from deployer.core.config.settings import (
    DeployerSettings,
    find_settings_file,
    load_settings,
)
from deployer.core.errors import ConfigError, ValidationError
from deployer.core.models import REDACTED

HETZNER = {
    "provider": "hetzner",
    "api_token": "hz_token.123",
    "server_type": "cx22",
    "location": "nbg1",
    "image": "ubuntu-24.04",
}


class TestCreationConfig:
    def test_minimal_lxd(self, raw_config):
        config = EnvironmentCreationConfig.from_raw(raw_config)
        assert config.name.value == "staging"
        assert config.instance_name.value == "deployer-vm-staging"
        assert isinstance(config.provider, LxdProvider)
        assert config.provider_name == "lxd"
        assert config.ssh.port == 22
        assert config.domain is None

    def test_explicit_instance_name(self, raw_config):
        raw_config["environment"]["instance_name"] = "tracker-vm"
        config = EnvironmentCreationConfig.from_raw(raw_config)
        assert config.instance_name.value == "tracker-vm"

    def test_optional_fields(self, raw_config):
        raw_config.update(
            domain="Tracker.Example.com",
            admin_email="admin@example.com",
            admin_password="s3cret-pass",
            health_check="https://tracker.example.com/health_check",
        )
        config = EnvironmentCreationConfig.from_raw(raw_config)
        assert config.domain.value == "tracker.example.com"
        assert config.admin_email.domain_part == "example.com"
        assert config.admin_password.reveal() == "s3cret-pass"
        assert config.health_check.uses_tls

    def test_invalid_name_rejects_bundle(self, raw_config):
        raw_config["environment"]["name"] = "Bad_Name"
        with pytest.raises(ValidationError) as exc:
            EnvironmentCreationConfig.from_raw(raw_config)
        assert exc.value.field == "environment.name"

    def test_missing_section(self, raw_config):
        del raw_config["ssh_credentials"]
        with pytest.raises(ValidationError) as exc:
            EnvironmentCreationConfig.from_raw(raw_config)
        assert exc.value.field == "ssh_credentials"

    def test_missing_key_file(self, raw_config, tmp_path: Path):
        raw_config["ssh_credentials"]["private_key_path"] = str(tmp_path / "nope")
        with pytest.raises(ValidationError) as exc:
            EnvironmentCreationConfig.from_raw(raw_config)
        assert exc.value.field == "ssh_credentials.private_key_path"
        assert "file not found" in exc.value.reason

    def test_key_path_expands_home(self, raw_config, ssh_keys, monkeypatch):
        private, public = ssh_keys
        monkeypatch.setenv("HOME", str(private.parent.parent))
        raw_config["ssh_credentials"]["private_key_path"] = "~/keys/id_test"
        config = EnvironmentCreationConfig.from_raw(raw_config)
        assert config.ssh.private_key_path == private

    @pytest.mark.parametrize("port", [0, 65536, "22", True, 2.5])
    def test_invalid_port(self, raw_config, port):
        raw_config["ssh_credentials"]["port"] = port
        with pytest.raises(ValidationError) as exc:
            EnvironmentCreationConfig.from_raw(raw_config)
        assert exc.value.field == "ssh_credentials.port"

    def test_invalid_username(self, raw_config):
        raw_config["ssh_credentials"]["username"] = "9lives"
        with pytest.raises(ValidationError) as exc:
            EnvironmentCreationConfig.from_raw(raw_config)
        assert exc.value.field == "ssh_credentials.username"

    def test_unknown_provider(self, raw_config):
        raw_config["provider"] = {"provider": "aws"}
        with pytest.raises(ValidationError) as exc:
            EnvironmentCreationConfig.from_raw(raw_config)
        assert exc.value.field == "provider.provider"

    def test_invalid_optional_field(self, raw_config):
        raw_config["admin_email"] = "not-an-email"
        with pytest.raises(ValidationError) as exc:
            EnvironmentCreationConfig.from_raw(raw_config)
        assert exc.value.field == "admin_email"

    def test_not_a_mapping(self):
        with pytest.raises(ValidationError):
            EnvironmentCreationConfig.from_raw(["not", "a", "mapping"])


class TestProviders:
    def test_hetzner_token_hidden_in_snapshot(self, raw_config):
        raw_config["provider"] = dict(HETZNER)
        config = EnvironmentCreationConfig.from_raw(raw_config)
        assert isinstance(config.provider, HetznerProvider)
        assert config.snapshot()["provider"]["api_token"] == REDACTED
        assert "hz_token" not in repr(config)

    def test_hetzner_tofu_vars_reveal_token(self, raw_config):
        raw_config["provider"] = dict(HETZNER)
        config = EnvironmentCreationConfig.from_raw(raw_config)
        assert config.provider.tofu_vars()["hcloud_token"] == "hz_token.123"

    def test_hetzner_requires_fields(self, raw_config):
        raw_config["provider"] = {**HETZNER, "location": ""}
        with pytest.raises(ValidationError) as exc:
            EnvironmentCreationConfig.from_raw(raw_config)
        assert exc.value.field == "provider.location"

    def test_lxd_tofu_vars(self, raw_config):
        config = EnvironmentCreationConfig.from_raw(raw_config)
        assert config.provider.tofu_vars() == {"lxd_profile_name": "deployer-staging"}


class TestSnapshot:
    def test_secrets_redacted(self, raw_config):
        raw_config["admin_password"] = "s3cret-pass"
        snap = EnvironmentCreationConfig.from_raw(raw_config).snapshot()
        assert snap["admin_password"] == REDACTED
        assert "s3cret" not in str(snap)

    def test_plain_data(self, raw_config, ssh_keys):
        snap = EnvironmentCreationConfig.from_raw(raw_config).snapshot()
        assert snap["name"] == "staging"
        assert snap["ssh_credentials"]["private_key_path"] == str(ssh_keys[0])
        assert snap["ssh_credentials"]["username"] == "deployer"
        assert snap["provider"] == {"provider": "lxd", "profile_name": "deployer-staging"}


class TestSummary:
    def test_minimal(self, raw_config):
        summary = EnvironmentCreationConfig.from_raw(raw_config).summary()
        assert summary == {
            "name": "staging",
            "instance_name": "deployer-vm-staging",
            "provider": "lxd",
            "ssh_user": "deployer",
            "ssh_port": 22,
            "has_domain": False,
            "has_admin_email": False,
            "has_admin_password": False,
            "has_health_check": False,
        }

    def test_flags_optional_sections(self, raw_config):
        raw_config.update(domain="tracker.example.com", admin_password="s3cret-pass")
        raw_config["provider"] = dict(HETZNER)
        summary = EnvironmentCreationConfig.from_raw(raw_config).summary()
        assert summary["provider"] == "hetzner"
        assert summary["has_domain"] is True
        assert summary["has_admin_password"] is True
        assert "s3cret" not in str(summary)
        assert "hz_token" not in str(summary)


class TestLoadCreationConfig:
    def _write(self, tmp_path: Path, ssh_keys, name: str = "staging") -> Path:
        private, public = ssh_keys
        path = tmp_path / f"{name}.yml"
        path.write_text(textwrap.dedent(f"""\
            environment:
              name: {name}
            ssh_credentials:
              private_key_path: {private}
              public_key_path: {public}
              username: deployer
            provider:
              provider: lxd
              profile_name: deployer-{name}
        """))
        return path

    def test_load(self, tmp_path: Path, ssh_keys):
        config = load_creation_config(self._write(tmp_path, ssh_keys))
        assert config.name.value == "staging"

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_creation_config(tmp_path / "missing.yml")

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "bad.yml"
        path.write_text("environment: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_creation_config(path)

    def test_not_a_mapping(self, tmp_path: Path):
        path = tmp_path / "list.yml"
        path.write_text("- one\n- two\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_creation_config(path)


class TestSettings:
    @pytest.fixture(autouse=True)
    def _clean_env(self, monkeypatch):
        for var in ("DEPLOYER_DATA_DIR", "DEPLOYER_BUILD_DIR", "DEPLOYER_MAX_CONCURRENT"):
            monkeypatch.delenv(var, raising=False)

    def test_defaults(self):
        s = DeployerSettings()
        assert s.ssh_max_attempts == 30
        assert s.ssh_connect_timeout == 5
        assert s.ssh_retry_delay == 2.0
        assert s.binaries.tofu == "tofu"
        assert s.tofu_dir("dev") == Path("build") / "dev" / "tofu"

    def test_load_resolves_relative_to_file(self, tmp_path: Path):
        path = tmp_path / "deployer.yml"
        path.write_text("data_dir: state\nbuild_dir: /abs/build\nmax_concurrent_pipelines: 2\n")
        s = load_settings(path)
        assert s.data_dir == tmp_path.resolve() / "state"
        assert s.build_dir == Path("/abs/build")
        assert s.max_concurrent_pipelines == 2

    def test_env_overrides(self, tmp_path: Path, monkeypatch):
        path = tmp_path / "deployer.yml"
        path.write_text("data_dir: state\n")
        monkeypatch.setenv("DEPLOYER_DATA_DIR", str(tmp_path / "override"))
        monkeypatch.setenv("DEPLOYER_MAX_CONCURRENT", "8")
        s = load_settings(path)
        assert s.data_dir == tmp_path / "override"
        assert s.max_concurrent_pipelines == 8

    def test_no_file_uses_cwd(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        s = load_settings()
        assert s.data_dir == tmp_path.resolve() / "data"

    def test_invalid_value(self, tmp_path: Path):
        path = tmp_path / "deployer.yml"
        path.write_text("ssh_max_attempts: 0\n")
        with pytest.raises(ConfigError, match="Invalid deployer settings"):
            load_settings(path)

    def test_invalid_env_override_keeps_cause(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("DEPLOYER_MAX_CONCURRENT", "lots")
        path = tmp_path / "deployer.yml"
        path.write_text("data_dir: state\n")
        with pytest.raises(ConfigError, match="max_concurrent_pipelines") as exc:
            load_settings(path)
        assert isinstance(exc.value.__cause__, PydanticValidationError)

    def test_missing_explicit_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "nope.yml")

    def test_find_walks_upward(self, tmp_path: Path):
        (tmp_path / "deployer.yml").write_text("{}\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_settings_file(nested) == (tmp_path / "deployer.yml").resolve()
