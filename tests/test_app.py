import subprocess
import sys


def test_app_help_runs():
    proc = subprocess.run(
        [sys.executable, "-m", "walkin_queue.app", "-h"],
        capture_output=True,
        text=True,
        check=False,
    )
    assert proc.returncode == 0
    out = proc.stdout + proc.stderr
    assert "main entrypoint" in out
    assert "manager" in out
    assert "counter" in out
    assert "ticket" in out


def test_manager_help_runs():
    proc = subprocess.run(
        [sys.executable, "-m", "walkin_queue.app", "manager", "-h"],
        capture_output=True,
        text=True,
        check=False,
    )
    assert proc.returncode == 0
    out = proc.stdout + proc.stderr
    assert "--services" in out
    assert "--maintenance" in out
