"""
Test that all modules can be imported correctly
Run this after installing dependencies to validate the setup
"""
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


def test_core_imports():
    """Test core module imports"""
    from cs230.config import settings
    from cs230.exceptions import ServerFatalError, TesterError
    from cs230.models import Outcome, TestParams

    assert issubclass(ServerFatalError, TesterError)
    assert settings.bind_host == "127.0.0.1"


def test_engine_imports():
    """Test engine module imports"""
    from cs230.engine.connection_handler import ConnectionHandler
    from cs230.engine.dispatch_loop import TesterServer, start_server
    from cs230.engine.message_channel import MessageChannel
    from cs230.engine.problem_generator import ProblemGenerator
    from cs230.engine.result_channel import ResultChannel


def test_harness_imports():
    """Test harness module imports"""
    from harness.client_process import ClientProcess
    from harness.main import build_parser, main


def test_settings_env_override(monkeypatch):
    """Settings honour the CS230_ prefix"""
    from cs230.config import Settings

    monkeypatch.setenv("CS230_SUCCESS_TOKEN", "WELLDONE")
    monkeypatch.setenv("CS230_READ_TIMEOUT_SEC", "2.5")
    overridden = Settings()

    assert overridden.success_token == "WELLDONE"
    assert overridden.read_timeout_sec == 2.5
