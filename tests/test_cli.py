"""
Tests for the CLI commands and global options.
"""

import json
import logging
import textwrap
from pathlib import Path

import pytest
from click.testing import CliRunner

from deployer.adapters.mock import fake_toolchain
from deployer.core.errors import AdapterError
from deployer.main import cli


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def project(tmp_path: Path, ssh_keys) -> Path:
    """A deployer.yml plus environment files, all under tmp_path."""
    private, public = ssh_keys
    (tmp_path / "deployer.yml").write_text(textwrap.dedent("""\
        data_dir: data
        build_dir: build
        ssh_max_attempts: 2
        ssh_retry_delay: 0
        ssh_retry_max_delay: 0
        destroy_retry_delay: 0
    """))
    envs = tmp_path / "envs"
    envs.mkdir()
    for name in ("staging", "e2e-a", "e2e-b"):
        (envs / f"{name}.yml").write_text(textwrap.dedent(f"""\
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
    return tmp_path


@pytest.fixture
def toolchain():
    return fake_toolchain()


@pytest.fixture
def invoke(project: Path, toolchain):
    runner = CliRunner()

    def _invoke(*args: str):
        return runner.invoke(
            cli,
            ["--settings", str(project / "deployer.yml"), *args],
            obj={"toolchain": toolchain},
        )

    return _invoke


def env_file(project: Path, name: str = "staging") -> str:
    return str(project / "envs" / f"{name}.yml")


class TestCLIGlobal:
    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "provision, configure and destroy" in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_missing_settings_file(self, tmp_path: Path):
        result = CliRunner().invoke(cli, ["--settings", str(tmp_path / "nope.yml"), "list"], obj={})
        assert result.exit_code == 1
        assert "[config_error]" in result.output


class TestCreateCommand:
    def test_create(self, invoke, project):
        result = invoke("create", "--env-file", env_file(project))
        assert result.exit_code == 0, result.output
        assert "Environment 'staging' is running at 10.140.190.14" in result.output

    def test_create_json(self, invoke, project):
        result = invoke("create", "--env-file", env_file(project), "--json")
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["ok"] is True
        assert data["environment"]["state"] == "running"
        assert data["environment"]["instance_ip"] == "10.140.190.14"

    def test_create_many(self, invoke, project):
        result = invoke(
            "create",
            "--env-file", env_file(project, "e2e-a"),
            "--env-file", env_file(project, "e2e-b"),
        )
        assert result.exit_code == 0, result.output
        assert "e2e-a: created" in result.output
        assert "e2e-b: created" in result.output

    def test_create_failure(self, invoke, project, toolchain):
        toolchain.provisioner.set_failure("apply", AdapterError("tofu", "apply", 1))
        result = invoke("create", "--env-file", env_file(project))
        assert result.exit_code == 1
        assert "[step_failed]" in result.output
        assert "deployer status staging" in result.output

    def test_create_twice(self, invoke, project):
        invoke("create", "--env-file", env_file(project))
        result = invoke("create", "--env-file", env_file(project))
        assert result.exit_code == 1
        assert "[already_exists]" in result.output

    def test_missing_env_file(self, invoke, project):
        result = invoke("create", "--env-file", str(project / "envs" / "nope.yml"))
        assert result.exit_code == 1
        assert "[config_error]" in result.output

    def test_invalid_env_file(self, invoke, project, toolchain):
        path = project / "envs" / "bad.yml"
        path.write_text(Path(env_file(project)).read_text().replace("name: staging", "name: Bad_Name"))
        result = invoke("create", "--env-file", str(path))
        assert result.exit_code == 1
        assert "[validation_error]" in result.output
        assert "environment.name" in result.output
        assert toolchain.provisioner.call_count == 0


class TestValidateCommand:
    def test_valid(self, invoke, project, toolchain):
        result = invoke("validate", "--env-file", env_file(project))
        assert result.exit_code == 0, result.output
        assert "is valid" in result.output
        assert "Environment: staging" in result.output
        assert "Instance:    deployer-vm-staging" in result.output
        assert "Provider:    lxd" in result.output
        assert "Optional:    none" in result.output
        assert toolchain.provisioner.call_count == 0
        assert not (project / "data").exists()

    def test_valid_json_hides_secrets(self, invoke, project):
        path = project / "envs" / "secret.yml"
        path.write_text(Path(env_file(project)).read_text() + "admin_password: s3cret-pass\n")
        result = invoke("validate", "--env-file", str(path), "--json")
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["ok"] is True
        assert data["config"]["name"] == "staging"
        assert data["config"]["provider"] == "lxd"
        assert data["config"]["has_admin_password"] is True
        assert data["config"]["has_domain"] is False
        assert "s3cret-pass" not in result.output

    def test_invalid(self, invoke, project, toolchain):
        path = project / "envs" / "bad.yml"
        path.write_text(Path(env_file(project)).read_text().replace("name: staging", "name: Bad_Name"))
        result = invoke("validate", "--env-file", str(path))
        assert result.exit_code == 1
        assert "[validation_error]" in result.output
        assert "environment.name" in result.output
        assert toolchain.provisioner.call_count == 0

    def test_invalid_json(self, invoke, project):
        path = project / "envs" / "bad.yml"
        path.write_text(Path(env_file(project)).read_text().replace("provider: lxd", "provider: aws"))
        result = invoke("validate", "--env-file", str(path), "--json")
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["ok"] is False
        assert data["error"]["kind"] == "validation_error"
        assert data["error"]["field"] == "provider.provider"

    def test_missing_file(self, invoke, project):
        result = invoke("validate", "--env-file", str(project / "envs" / "nope.yml"))
        assert result.exit_code == 1
        assert "[config_error]" in result.output


class TestStatusCommand:
    def test_status(self, invoke, project):
        invoke("create", "--env-file", env_file(project))
        result = invoke("status", "staging")
        assert result.exit_code == 0
        assert "staging" in result.output
        assert "running" in result.output
        assert "deployer-vm-staging (10.140.190.14)" in result.output

    def test_status_failed_shows_error(self, invoke, project, toolchain):
        toolchain.provisioner.set_failure(
            "apply", AdapterError("tofu", "apply", 1, stderr_excerpt="Error: quota exceeded")
        )
        invoke("create", "--env-file", env_file(project))
        result = invoke("status", "staging")
        assert result.exit_code == 0
        assert "Failed at provisioning (was provisioning)" in result.output
        assert "| Error: quota exceeded" in result.output

    def test_status_json(self, invoke, project):
        invoke("create", "--env-file", env_file(project))
        result = invoke("status", "staging", "--json")
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["name"] == "staging"
        assert data["state"] == "running"

    def test_status_missing_json(self, invoke):
        result = invoke("status", "ghost", "--json")
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["ok"] is False
        assert data["error"]["kind"] == "not_found"


class TestListCommand:
    def test_empty(self, invoke):
        result = invoke("list")
        assert result.exit_code == 0
        assert "No environments." in result.output

    def test_list(self, invoke, project):
        invoke("create", "--env-file", env_file(project))
        result = invoke("list")
        assert result.exit_code == 0
        assert "staging" in result.output
        assert "10.140.190.14" in result.output

    def test_list_json(self, invoke, project):
        invoke("create", "--env-file", env_file(project))
        result = invoke("list", "--json")
        assert result.exit_code == 0
        [summary] = json.loads(result.output)
        assert summary["name"] == "staging"
        assert summary["state"] == "running"


class TestDestroyCommand:
    def test_destroy(self, invoke, project):
        invoke("create", "--env-file", env_file(project))
        result = invoke("destroy", "staging")
        assert result.exit_code == 0, result.output
        assert "Environment 'staging' destroyed" in result.output
        assert "No environments." in invoke("list").output

    def test_destroy_absent(self, invoke):
        result = invoke("destroy", "ghost")
        assert result.exit_code == 0
        assert "does not exist, nothing to destroy" in result.output

    def test_destroy_json(self, invoke, project):
        invoke("create", "--env-file", env_file(project))
        result = invoke("destroy", "staging", "--json")
        assert result.exit_code == 0
        assert json.loads(result.output) == {"ok": True, "name": "staging", "destroyed": True}

    def test_destroy_many(self, invoke, project):
        invoke("create", "--env-file", env_file(project, "e2e-a"), "--env-file", env_file(project, "e2e-b"))
        result = invoke("destroy", "e2e-a", "e2e-b", "--json")
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["ok"] is True
        assert [r["name"] for r in data["results"]] == ["e2e-a", "e2e-b"]

    def test_destroy_invalid_name(self, invoke):
        result = invoke("destroy", "Bad_Name")
        assert result.exit_code == 1
        assert "[validation_error]" in result.output


class TestToolsCommand:
    def test_fakes_available(self, invoke):
        result = invoke("tools", "--json")
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert set(data) == {
            "provisioner",
            "configuration_manager",
            "instance_manager",
            "remote_shell",
            "test_containers",
        }

    def test_missing_binaries(self, tmp_path: Path):
        settings = tmp_path / "deployer.yml"
        settings.write_text(textwrap.dedent("""\
            binaries:
              tofu: missing-tofu-4821
              ansible_playbook: missing-ansible-4821
              lxc: missing-lxc-4821
              ssh: missing-ssh-4821
              docker: missing-docker-4821
        """))
        result = CliRunner().invoke(cli, ["--settings", str(settings), "tools"], obj={})
        assert result.exit_code == 1
        assert "✗" in result.output
        assert "missing-tofu-4821" in result.output
