import logging
import os
import sys
from pathlib import Path

import pytest
import structlog
from click.testing import CliRunner

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from rotator.cli.main import cli  # noqa: E402

from conftest import output_files  # noqa: E402

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def isolated_cli(monkeypatch):
    for var in list(os.environ):
        if var.startswith("ROTATOR_") or var == "LOG_LEVEL":
            monkeypatch.delenv(var, raising=False)
    yield
    # handlers created inside CliRunner point at its closed streams
    logging.getLogger().handlers.clear()
    structlog.reset_defaults()


@pytest.fixture
def runner():
    return CliRunner()


def test_copies_stdin_into_file(tmp_path, runner):
    prefix = tmp_path / "out" / "cap"

    result = runner.invoke(cli, [str(prefix), "--log-console"], input=b"hello rotator")

    assert result.exit_code == 0, result.output
    files = output_files(tmp_path / "out")
    assert [f.name for f in files] == ["cap.000000"]
    assert files[0].read_bytes() == b"hello rotator"


def test_size_rotation_from_options(tmp_path, runner):
    prefix = tmp_path / "out" / "cap"

    result = runner.invoke(
        cli,
        [str(prefix), "--max-bytes", "4", "--chunk-size", "2", "--extension", "log"],
        input=b"abcdefgh",
    )

    assert result.exit_code == 0, result.output
    files = output_files(tmp_path / "out")
    assert [f.name for f in files] == ["cap.000000.log", "cap.000001.log"]
    assert [f.read_bytes() for f in files] == [b"abcd", b"efgh"]


def test_empty_input_leaves_one_empty_file(tmp_path, runner):
    prefix = tmp_path / "out" / "cap"

    result = runner.invoke(cli, [str(prefix)], input=b"")

    assert result.exit_code == 0
    assert [f.read_bytes() for f in output_files(tmp_path / "out")] == [b""]


@pytest.mark.parametrize(
    "args",
    [
        ["--max-bytes", "0"],
        ["--max-age", "soon"],
        ["--continue-read", "--source", "in.fifo"],
        ["--on-write-error", "discard"],
    ],
)
def test_invalid_configuration_exits_2(tmp_path, runner, args):
    prefix = tmp_path / "out" / "cap"

    result = runner.invoke(cli, [str(prefix), *args], input=b"data")

    assert result.exit_code == 2
    assert not (tmp_path / "out").exists()


def test_missing_prefix_exits_2(runner):
    result = runner.invoke(cli, [], input=b"data")

    assert result.exit_code == 2


def test_missing_named_pipe_exits_3(tmp_path, runner):
    prefix = tmp_path / "out" / "cap"

    result = runner.invoke(cli, [str(prefix), "--source", str(tmp_path / "nope")])

    assert result.exit_code == 3
    # the first output file exists even though nothing could be read
    assert [f.read_bytes() for f in output_files(tmp_path / "out")] == [b""]


def test_prefix_from_environment(tmp_path, runner):
    prefix = tmp_path / "env" / "cap"

    result = runner.invoke(
        cli, [], input=b"from env", env={"ROTATOR_OUTPUT_PREFIX": str(prefix)}
    )

    assert result.exit_code == 0, result.output
    assert (tmp_path / "env" / "cap.000000").read_bytes() == b"from env"


def test_yaml_config_with_cli_override(tmp_path, runner):
    config_file = tmp_path / "rotator.yaml"
    config_file.write_text(
        f"output_prefix: {tmp_path / 'yaml' / 'cap'}\n"
        "naming: sequence\n"
        "seq_width: 3\n"
        "trigger:\n"
        "  max_bytes: 1K\n"
    )

    result = runner.invoke(
        cli,
        ["--config", str(config_file), "--seq-width", "2"],
        input=b"yaml",
    )

    assert result.exit_code == 0, result.output
    assert (tmp_path / "yaml" / "cap.00").read_bytes() == b"yaml"
