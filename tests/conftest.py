import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from voicechat.config import Settings  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    """Settings with playback pacing disabled so tests run without delays."""
    return Settings(
        chat_base_url="http://chat.test/v1",
        tts_base_url="http://tts.test",
        inter_clip_delay=0.0,
        inactivity_timeout=1.0,
    )
