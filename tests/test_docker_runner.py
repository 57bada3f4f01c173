from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, DockerException, NotFound

from errors import LaunchError, ProbeError
from fakes import batch_of
from runners.docker import DockerRunner


def _env_file(tmp_path: Path, **extra: str) -> Path:
    p = tmp_path / "renovate.env.json"
    p.write_text(json.dumps({"RENOVATE_TOKEN": "t", **extra}), encoding="utf-8")
    return p


def test_run_job_pulls_creates_and_starts_named_container(tmp_path: Path) -> None:
    config_file = tmp_path / "config.js"
    config_file.write_text("module.exports = {};", encoding="utf-8")
    client = MagicMock()
    runner = DockerRunner("renovate/renovate:latest", _env_file(tmp_path, RENOVATE_CONFIG_FILE=str(config_file)), client=client)
    b = batch_of(1, 2)

    runner.run_job(b)

    client.images.pull.assert_called_once_with("renovate/renovate:latest")
    kwargs = client.containers.create.call_args.kwargs
    assert kwargs["name"] == b.id
    assert kwargs["auto_remove"] is True
    assert kwargs["environment"]["RENOVATE_TOKEN"] == "t"
    assert json.loads(kwargs["environment"]["RENOVATE_REPOSITORIES"]) == ["acme/repo-1", "acme/repo-2"]
    (mount,) = kwargs["mounts"]
    assert mount["Target"] == "/usr/src/app/config.js"
    assert mount["ReadOnly"] is True
    client.containers.create.return_value.start.assert_called_once_with()


def test_run_job_without_config_file_has_no_mounts(tmp_path: Path) -> None:
    client = MagicMock()
    DockerRunner("renovate/renovate", _env_file(tmp_path), client=client).run_job(batch_of(1))
    assert client.containers.create.call_args.kwargs["mounts"] is None


def test_missing_env_file_is_a_launch_error(tmp_path: Path) -> None:
    client = MagicMock()
    runner = DockerRunner("renovate/renovate", tmp_path / "missing.json", client=client)
    with pytest.raises(LaunchError, match="Renovate Environment File"):
        runner.run_job(batch_of(1))
    client.images.pull.assert_not_called()


def test_engine_error_is_a_launch_error(tmp_path: Path) -> None:
    client = MagicMock()
    client.images.pull.side_effect = APIError("pull access denied")
    runner = DockerRunner("renovate/renovate", _env_file(tmp_path), client=client)
    b = batch_of(1)
    with pytest.raises(LaunchError) as exc:
        runner.run_job(b)
    assert exc.value.batch_id == b.id


@pytest.mark.parametrize("status,expected", [("running", True), ("created", True), ("exited", False), ("dead", False)])
def test_check_job_maps_container_status(tmp_path: Path, status: str, expected: bool) -> None:
    client = MagicMock()
    client.containers.get.return_value = SimpleNamespace(status=status)
    b = batch_of(1)
    assert DockerRunner("renovate/renovate", tmp_path, client=client).check_job(b) is expected
    client.containers.get.assert_called_once_with(b.id)


def test_check_job_missing_container_is_finished(tmp_path: Path) -> None:
    client = MagicMock()
    client.containers.get.side_effect = NotFound("No such container")
    assert DockerRunner("renovate/renovate", tmp_path, client=client).check_job(batch_of(1)) is False


def test_check_job_daemon_error_is_a_probe_error(tmp_path: Path) -> None:
    client = MagicMock()
    client.containers.get.side_effect = DockerException("daemon not reachable")
    with pytest.raises(ProbeError):
        DockerRunner("renovate/renovate", tmp_path, client=client).check_job(batch_of(1))


def test_start_failure_removes_the_created_container(tmp_path: Path) -> None:
    client = MagicMock()
    container = client.containers.create.return_value
    container.start.side_effect = APIError("start failed")
    b = batch_of(1)

    with pytest.raises(LaunchError) as exc:
        DockerRunner("renovate/renovate", _env_file(tmp_path), client=client).run_job(b)

    assert exc.value.batch_id == b.id
    container.remove.assert_called_once_with(force=True)


def test_start_failure_with_vanished_container_is_still_a_launch_error(tmp_path: Path) -> None:
    client = MagicMock()
    container = client.containers.create.return_value
    container.start.side_effect = APIError("start failed")
    container.remove.side_effect = NotFound("No such container")

    with pytest.raises(LaunchError):
        DockerRunner("renovate/renovate", _env_file(tmp_path), client=client).run_job(batch_of(1))
    container.remove.assert_called_once_with(force=True)


def test_client_is_created_with_request_timeout(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    client = MagicMock()
    from_env = MagicMock(return_value=client)
    monkeypatch.setattr("runners.docker.docker.from_env", from_env)

    DockerRunner("renovate/renovate", _env_file(tmp_path), request_timeout_seconds=12.0).run_job(batch_of(1))

    from_env.assert_called_once_with(timeout=12.0)
    client.containers.create.return_value.start.assert_called_once_with()
