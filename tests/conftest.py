import pytest

from screenmate.api.services.automation import Clipboard
from screenmate.config import Settings
from tests.fakes import FakeAutomation, FakeLLM, RecordingSink, make_png_data_url


@pytest.fixture
def png_data_url():
    """テスト用の小さなPNG画像"""
    return make_png_data_url()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def automation():
    return FakeAutomation()


@pytest.fixture
def clipboard(automation):
    return Clipboard(automation, settle_delay=0)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def settings(tmp_path):
    """テスト用の設定（データは一時ディレクトリ）"""
    return Settings(
        api_key="test-key",
        data_dir=tmp_path / "data",
        request_timeout=5.0,
        memory_timeout=0.2,
        persona_timeout=0.2,
        clipboard_settle=0.0,
        capture_interval=3600.0,
        transcribe_command="transcribe-cli",
        transcribe_timeout=1.0,
    )
