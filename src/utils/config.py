import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError
from dotenv import load_dotenv


class LoopConfig(BaseModel):
    target_fps: int = Field(default=12)
    frame_width: int = Field(default=640)
    frame_height: int = Field(default=480)


class DetectorConfig(BaseModel):
    model_path: str = Field(default="models/face_landmarker.task")
    model_url: str = Field(
        default="https://storage.googleapis.com/mediapipe-models/face_landmarker/face_landmarker/float16/1/face_landmarker.task"
    )
    min_detection_confidence: float = Field(default=0.5)
    min_tracking_confidence: float = Field(default=0.5)


class GuideConfig(BaseModel):
    width_ratio: float = Field(default=0.6)
    height_ratio: float = Field(default=0.7)
    margin: float = Field(default=0.05)
    min_face_ratio: float = Field(default=0.3)
    max_face_ratio: float = Field(default=0.95)


class AlignmentConfig(BaseModel):
    required_frames: int = Field(default=12)


class BlinkConfig(BaseModel):
    calibration_frames: int = Field(default=15)
    closed_threshold_ratio: float = Field(default=0.65)
    closed_frame_threshold: int = Field(default=2)
    open_frame_threshold: int = Field(default=2)
    cooldown_ms: float = Field(default=600.0)
    ema_alpha: float = Field(default=0.3)


class HeadPoseConfig(BaseModel):
    yaw_threshold: float = Field(default=0.09)
    pitch_threshold: float = Field(default=0.07)
    roll_warning_threshold: float = Field(default=0.15)
    held_frames: int = Field(default=4)
    # ~30 degrees of tilt maps to a roll metric of 1.0
    roll_reference_radians: float = Field(default=0.52)


class SequencerConfig(BaseModel):
    step_cooldown_ms: float = Field(default=500.0)
    restart_delay_ms: float = Field(default=100.0)


class AntiSpoofConfig(BaseModel):
    enabled: bool = True
    max_history_frames: int = 30
    min_frames_for_check: int = 10
    min_depth_keypoints: int = 50
    min_depth_variance: float = 0.5
    depth_check_weight: float = 0.4
    min_micro_movement: float = 0.003
    min_movement_samples: int = 5
    movement_check_weight: float = 0.3
    max_static_frames: int = 20
    static_epsilon: float = 0.001
    static_fraction: float = 0.8
    static_check_weight: float = 0.3
    depth_change_scale: float = 10.0
    spoof_threshold: float = 0.6


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"
    rotation: str = "10 MB"
    retention: str = "1 week"
    file: Optional[str] = None
    console: bool = True


class RootConfig(BaseModel):
    loop: LoopConfig = Field(default_factory=LoopConfig)
    detector: DetectorConfig = Field(default_factory=DetectorConfig)
    guide: GuideConfig = Field(default_factory=GuideConfig)
    alignment: AlignmentConfig = Field(default_factory=AlignmentConfig)
    blink: BlinkConfig = Field(default_factory=BlinkConfig)
    head_pose: HeadPoseConfig = Field(default_factory=HeadPoseConfig)
    sequencer: SequencerConfig = Field(default_factory=SequencerConfig)
    anti_spoof: AntiSpoofConfig = Field(default_factory=AntiSpoofConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class Config:
    """Loads the YAML configuration on top of the built-in defaults.

    Lookup order for the file: explicit ``path``, then ``LIVENESS_CONFIG``
    from the environment (``.env`` is honoured), then
    ``config/config.yaml`` under the project root. A missing file is not
    an error; the defaults are used as-is.
    """

    def __init__(self, path: Optional[str] = None):
        load_dotenv(override=True)
        self.root_dir = Path(__file__).resolve().parents[2]
        env_path = os.getenv("LIVENESS_CONFIG")
        if path:
            self.config_path = Path(path)
        elif env_path:
            self.config_path = Path(env_path)
        else:
            self.config_path = self.root_dir / "config" / "config.yaml"
        self.data: RootConfig = self._load()

    def _load(self) -> RootConfig:
        config_dict: Dict[str, Any] = {}
        if self.config_path.exists():
            with open(self.config_path, "r", encoding="utf-8") as f:
                config_dict = yaml.safe_load(f) or {}
        try:
            return RootConfig(**config_dict)
        except ValidationError as e:
            raise RuntimeError(f"Invalid configuration: {e}")

    def get(self) -> RootConfig:
        return self.data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Build a config from an in-memory mapping, skipping file lookup."""
        config = cls.__new__(cls)
        config.root_dir = Path(__file__).resolve().parents[2]
        config.config_path = None
        try:
            config.data = RootConfig(**data)
        except ValidationError as e:
            raise RuntimeError(f"Invalid configuration: {e}")
        return config
