"""Pytest configuration for face liveness tests."""
import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from src.core.liveness import BoundingBox, DeviceInfo, LivenessVerifier, make_guide_box  # noqa: E402
from src.core.liveness.synthetic import SyntheticFaceGenerator  # noqa: E402
from src.utils.config import Config  # noqa: E402


@pytest.fixture
def default_config():
    """Built-in defaults, independent of config/config.yaml."""
    return Config.from_dict({})


@pytest.fixture
def guide_box() -> BoundingBox:
    """Default guide for a 640x480 frame: (128, 72, 384, 336)."""
    return make_guide_box(640, 480)


@pytest.fixture
def generator():
    """Live-looking synthetic face centered in a 640x480 frame."""
    return SyntheticFaceGenerator(seed=7)


@pytest.fixture
def device_info():
    return DeviceInfo(user_agent="pytest", platform="test")


@pytest.fixture
def verifier(default_config, device_info):
    """Verifier with a fixed step order seed."""
    return LivenessVerifier(default_config, seed=1, device_info=device_info)
