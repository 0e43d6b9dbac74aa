import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from rotator.config.config import RotationTrigger  # noqa: E402
from rotator.core.models import OutputFile, RotationReason  # noqa: E402
from rotator.core.policy import RotationPolicy  # noqa: E402


def _file(bytes_written: int = 0, opened_at: float = 0.0) -> OutputFile:
    path = Path("/tmp/cap.000000")
    return OutputFile(
        name=path.name,
        path=path,
        final_path=path,
        opened_at=opened_at,
        bytes_written=bytes_written,
    )


@pytest.mark.unit
def test_no_trigger_never_rotates():
    policy = RotationPolicy()
    assert policy.reason(_file(10**12, 0.0), 10**6, 10**9) is None


@pytest.mark.unit
def test_size_trigger_rotates_when_chunk_would_overflow():
    policy = RotationPolicy(RotationTrigger(max_bytes=100))

    assert policy.reason(_file(50), 50, 0.0) is None  # exactly full is fine
    assert policy.reason(_file(100), 1, 0.0) is RotationReason.SIZE
    assert policy.reason(_file(51), 50, 0.0) is RotationReason.SIZE


@pytest.mark.unit
def test_empty_file_never_rotates_even_for_oversized_chunk():
    policy = RotationPolicy(RotationTrigger(max_bytes=10, max_age=1))
    assert policy.reason(_file(0, opened_at=0.0), 1000, 500.0) is None


@pytest.mark.unit
def test_age_trigger_uses_open_time():
    policy = RotationPolicy(RotationTrigger(max_age=30))

    assert policy.reason(_file(1, opened_at=100.0), 1, 129.9) is None
    assert policy.reason(_file(1, opened_at=100.0), 1, 130.0) is RotationReason.AGE


@pytest.mark.unit
def test_size_reported_before_age_when_both_apply():
    policy = RotationPolicy(RotationTrigger(max_bytes=10, max_age=1))

    assert policy.reason(_file(10, opened_at=0.0), 5, 50.0) is RotationReason.SIZE
    assert policy.reason(_file(1, opened_at=0.0), 5, 50.0) is RotationReason.AGE
    assert policy.should_rotate(_file(1, opened_at=0.0), 5, 50.0)
    assert not policy.should_rotate(_file(1, opened_at=0.0), 5, 0.5)
