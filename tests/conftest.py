import signal
import sys
from pathlib import Path
from typing import Iterable

import pytest

from tests.helpers import FakeClient

LOG_PATTERN = "supervisorrpc.run.*.log"

# Keep the developer's own supervisord settings out of the tests.
_ENV_VARS = (
    "SUPERVISORRPC_CONFIG",
    "SUPERVISORRPC_URL",
    "SUPERVISORRPC_USERNAME",
    "SUPERVISORRPC_PASSWORD",
    "SUPERVISORRPC_SOCKET",
    "SUPERVISORRPC_PORT",
    "SUPERVISORRPC_DATA_DIR",
)


def _find_latest_log(dirs: Iterable[Path]) -> Path | None:
    """Return the most recently modified log file among *dirs* (recursive)."""
    latest: Path | None = None
    for base in dirs:
        if not base.exists():
            continue
        for path in base.rglob(LOG_PATTERN):
            if latest is None or path.stat().st_mtime > latest.stat().st_mtime:
                latest = path
    return latest


@pytest.hookimpl(hookwrapper=True, tryfirst=True)
def pytest_runtest_makereport(item, call):  # noqa: D401 – pytest hook
    outcome = yield
    rep = outcome.get_result()

    # Only act after the *call* phase and when the test has failed.
    if rep.when != "call" or rep.passed:
        return

    candidate_dirs: list[Path] = []
    for fixture_name in ("tmp_path", "tmp_path_factory"):
        if fixture_name in item.funcargs:
            fixture_val = item.funcargs[fixture_name]
            if isinstance(fixture_val, Path):
                candidate_dirs.append(fixture_val)
            elif hasattr(fixture_val, "getbasetemp"):
                candidate_dirs.append(Path(fixture_val.getbasetemp()))

    latest_log = _find_latest_log(candidate_dirs)
    if latest_log is None:
        return

    try:
        contents = latest_log.read_text(encoding="utf-8")
    except OSError as exc:  # pragma: no cover – best-effort
        contents = f"<error reading log file {latest_log}: {exc}>"

    rep.sections.append(("supervisorrpc-log", contents))


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _enforce_timeout(request):
    """Fail tests that run longer than the allowed time.

    Default timeout is 30 seconds unless a test is marked with
    ``@pytest.mark.timeout(N)`` specifying a custom limit.
    """

    marker = request.node.get_closest_marker("timeout")
    timeout = int(marker.args[0]) if marker and marker.args else 30

    # Skip if timeout is non-positive or SIGALRM unavailable (e.g. Windows).
    if timeout <= 0 or sys.platform.startswith("win"):
        yield
        return

    def _alarm_handler(signum, frame):  # noqa: D401 – signal handler
        pytest.fail(f"Test timed out after {timeout} seconds", pytrace=False)

    previous = signal.signal(signal.SIGALRM, _alarm_handler)  # type: ignore[arg-type]
    signal.alarm(timeout)

    try:
        yield
    finally:
        signal.alarm(0)
        signal.signal(signal.SIGALRM, previous)  # type: ignore[arg-type]


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def supervisord_conf(tmp_path):
    """Write a supervisord.conf under *tmp_path* and return its path."""

    def _write(text: str) -> Path:
        path = tmp_path / "supervisord.conf"
        path.write_text(text, encoding="utf-8")
        return path

    return _write
