import json
import os

import pytest

from core.tunnel_engine import EngineError, TunnelEngine

posix_only = pytest.mark.skipif(os.name == 'nt', reason="uses a shell script as fake engine")


def write_script(path, body):
    path.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
    path.chmod(0o755)
    return path


def test_missing_binary_fails(tmp_path):
    engine = TunnelEngine(work_dir=tmp_path / "engine", grace_seconds=0)

    with pytest.raises(EngineError, match="not found"):
        engine.spawn({"inbounds": []}, str(tmp_path / "no-such-xray"))


@posix_only
def test_engine_exiting_immediately_is_a_failure(tmp_path):
    binary = write_script(tmp_path / "xray", 'echo "failed to load config" >&2; exit 23')
    engine = TunnelEngine(work_dir=tmp_path / "engine", grace_seconds=0.3)

    with pytest.raises(EngineError, match="23"):
        engine.spawn({"inbounds": [{"port": 1080}]}, str(binary))

    assert list((tmp_path / "engine").glob("*.json")) == []


@posix_only
def test_spawn_writes_config_and_terminate_cleans_up(tmp_path):
    binary = write_script(tmp_path / "xray", 'exec sleep 30')
    engine = TunnelEngine(work_dir=tmp_path / "engine", grace_seconds=0.2)
    document = {"inbounds": [{"protocol": "socks", "port": 1080}]}

    handle = engine.spawn(document, str(binary))
    try:
        assert handle.is_alive()
        assert json.loads(handle.config_path.read_text(encoding="utf-8")) == document
        assert handle.process.args[1:3] == ["run", "-c"]
    finally:
        engine.terminate(handle)

    assert not handle.is_alive()
    assert not handle.config_path.exists()


@posix_only
def test_terminate_already_exited_process(tmp_path):
    binary = write_script(tmp_path / "xray", 'sleep 0.5')
    engine = TunnelEngine(work_dir=tmp_path / "engine", grace_seconds=0.1)

    handle = engine.spawn({"inbounds": []}, str(binary))
    handle.process.wait(timeout=5)

    engine.terminate(handle)

    assert not handle.config_path.exists()
