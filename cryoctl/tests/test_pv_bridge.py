import importlib.util
import logging
from pathlib import Path

import pytest

pytest.importorskip("epics")

BRIDGE_PATH = Path(__file__).resolve().parents[2] / "tools" / "pv_bridge.py"


def load_bridge():
    spec = importlib.util.spec_from_file_location("pv_bridge", BRIDGE_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class StoppedBridge:
    def __init__(self, *args, **kwargs):
        self.kwargs = kwargs

    def loop(self) -> None:
        raise KeyboardInterrupt


@pytest.fixture
def bridge(monkeypatch):
    module = load_bridge()
    monkeypatch.setattr(module, "PVBridge", StoppedBridge)
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kw: calls.append(kw))
    return module, calls


def test_verbose_configures_logging(bridge, capsys):
    module, calls = bridge
    assert module.main(["--verbose"]) == 0
    assert calls == [{"level": logging.INFO, "format": "[%(name)s] %(message)s"}]
    assert "[pv_bridge] stopped by user" in capsys.readouterr().out


def test_quiet_leaves_logging_alone(bridge):
    module, calls = bridge
    assert module.main([]) == 0
    assert calls == []
