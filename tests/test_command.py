import os
import signal
import subprocess
import sys
import time
from pathlib import Path

import pytest

from umini_builder.lib.command import CmdResult, CommandError, process_descendants, run_cmd, stop_process_tree
from umini_builder.lib.privileged import PrivilegedExecutor


def test_run_cmd_captures_output():
    r = run_cmd([sys.executable, "-c", "print('hello')"])
    assert r.ok
    assert r.stdout.strip() == "hello"


def test_run_cmd_raises_with_result_on_failure():
    with pytest.raises(CommandError) as excinfo:
        run_cmd([sys.executable, "-c", "import sys; sys.stderr.write('bad\\n'); sys.exit(3)"])

    assert excinfo.value.result.returncode == 3
    assert "bad" in excinfo.value.result.tail()


def test_run_cmd_check_false_returns_status():
    r = run_cmd([sys.executable, "-c", "raise SystemExit(2)"], check=False)
    assert r.returncode == 2
    assert not r.ok


def test_run_cmd_passes_input():
    r = run_cmd([sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"], input_text="abc")
    assert r.stdout.strip() == "ABC"


def test_run_cmd_timeout():
    with pytest.raises(subprocess.TimeoutExpired):
        run_cmd([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)


def test_dry_run_does_not_execute(tmp_path):
    marker = tmp_path / "marker"
    r = run_cmd([sys.executable, "-c", f"open({str(marker)!r}, 'w').close()"], dry_run=True)
    assert r.ok
    assert not marker.exists()


def test_tail_combines_and_truncates():
    r = CmdResult(argv=["x"], returncode=1, stdout="a\nb\n", stderr="c\nd\n")
    assert r.tail(3) == "b\nc\nd"


def test_privileged_executor_prefixes_elevation(tmp_path):
    ex = PrivilegedExecutor(elevate=(sys.executable, "-c", "import sys; print(sys.argv[1:])"))
    r = ex.run(["mount", "--bind", "/proc", str(tmp_path)])
    assert "'mount', '--bind', '/proc'" in r.stdout


def test_dry_run_executor_reports_nothing_mounted(tmp_path):
    assert PrivilegedExecutor(dry_run=True).is_mounted(tmp_path) is False


def _running(pid):
    try:
        stat = Path(f"/proc/{pid}/stat").read_text()
    except OSError:
        return False
    return stat.rsplit(")", 1)[1].split()[0] != "Z"


def test_timeout_stops_grandchildren(tmp_path):
    late = tmp_path / "late"
    inner = f"sleep 1; touch {late}"

    with pytest.raises(subprocess.TimeoutExpired):
        run_cmd(["sh", "-c", f'sh -c "{inner}"; :'], timeout=0.3)

    time.sleep(1.5)
    assert not late.exists()


def test_stop_process_tree_reaps_command_and_descendants():
    proc = subprocess.Popen(["sh", "-c", "sleep 30; :"], stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    deadline = time.monotonic() + 5
    children = []
    while not children and time.monotonic() < deadline:
        children = process_descendants(proc.pid)
        time.sleep(0.05)
    assert children

    stop_process_tree(proc, grace=2)

    assert proc.returncode is not None
    assert not any(_running(pid) for pid in children)


def test_stop_process_tree_uses_given_signaller():
    proc = subprocess.Popen(["sleep", "30"])
    sent = []

    def signaller(pids, sig):
        sent.append((list(pids), sig))
        os.kill(proc.pid, sig)

    stop_process_tree(proc, send_signal=signaller, grace=2)

    assert sent == [([proc.pid], signal.SIGTERM)]
    assert proc.returncode == -signal.SIGTERM
