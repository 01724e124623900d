#!/usr/bin/env python3
"""
Face Liveness - Main Entry Point

Challenge-response face liveness verification from a webcam: align,
blink and four head turns in random order, with passive anti-spoofing.
Version: 1.0.0
"""

import json
import signal
import sys
from pathlib import Path
from typing import Optional

import click
import cv2
import yaml
from loguru import logger

# Add src to Python path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from src.core.frame_loop import FrameLoop
from src.core.landmark_source import MediaPipeLandmarkSource
from src.core.liveness import LivenessVerifier, make_guide_box
from src.core.liveness.synthetic import SimulatedSubject, SyntheticFaceGenerator, iter_simulation
from src.core.video_stream import VideoStream
from src.utils.config import Config
from src.utils.logger import setup_logging


class LivenessApp:
    """Wires the camera, the landmark detector and the verifier together."""

    def __init__(self, config: Config, camera: int = 0, seed: Optional[int] = None, preview: bool = False):
        self.config = config
        cfg = config.get()
        self.camera = camera
        self.preview = preview
        self.verifier = LivenessVerifier(config, seed=seed)
        self.stream = VideoStream(camera, resolution=(cfg.loop.frame_width, cfg.loop.frame_height))
        self.source: Optional[MediaPipeLandmarkSource] = None
        self.loop = FrameLoop(self.on_frame, target_fps=cfg.loop.target_fps)
        self.last_instruction: Optional[str] = None

    def on_frame(self, now: float):
        frame = self.stream.read()
        if frame is None:
            return

        cfg = self.config.get()
        height, width = frame.shape[:2]
        guide_box = make_guide_box(width, height, cfg.guide.width_ratio, cfg.guide.height_ratio)
        if guide_box is None:
            return

        face = self.source.detect(frame, now)
        update = self.verifier.process_frame(face, guide_box, now=now)

        if update.instruction != self.last_instruction:
            self.last_instruction = update.instruction
            logger.info(f"[{update.step_number}/{update.total_steps}] {update.instruction}")

        if self.preview:
            self._draw(frame, guide_box, update)

        if update.result is not None:
            click.echo(json.dumps(update.result.to_dict(), indent=2))
            self.loop.stop()

    def _draw(self, frame, guide_box, update):
        color = (0, 200, 0) if update.error is None else (0, 0, 255)
        top_left = (int(guide_box.x), int(guide_box.y))
        bottom_right = (int(guide_box.right), int(guide_box.bottom))
        cv2.rectangle(frame, top_left, bottom_right, color, 2)
        cv2.putText(frame, update.instruction, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.7, color, 2)
        progress = update.debug.get("step_progress", 0.0)
        cv2.rectangle(frame, (10, 40), (10 + int(200 * progress), 46), color, -1)
        cv2.putText(frame, f"{self.loop.fps:.1f} FPS", (10, frame.shape[0] - 10),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1)
        cv2.imshow("Face Liveness", frame)
        if cv2.waitKey(1) & 0xFF == ord("q"):
            self.loop.stop()

    def start(self) -> bool:
        """Run one verification. Returns True when the user was verified."""
        try:
            with self.stream, MediaPipeLandmarkSource.from_config(self.config) as source:
                self.source = source
                self.verifier.start()
                self.loop.run()
        except KeyboardInterrupt:
            logger.info("Received interrupt signal, shutting down...")
        finally:
            if self.preview:
                cv2.destroyAllWindows()
        return self.verifier.session.result is not None

    def handle_signal(self, signum, frame):
        """Handle system signals for graceful shutdown."""
        logger.info(f"Received signal {signum}, stopping...")
        self.loop.stop()


@click.group()
@click.option('--config', '-c', default=None, help='Path to configuration file')
@click.option('--debug', '-d', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, config, debug):
    """Face Liveness - challenge-response liveness verification."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config
    ctx.obj['debug'] = debug


def _load(ctx) -> Config:
    try:
        config = Config(ctx.obj.get('config_path'))
    except RuntimeError as e:
        raise click.ClickException(str(e))
    setup_logging(config, level="DEBUG" if ctx.obj.get('debug') else None)
    return config


@cli.command()
@click.option('--camera', default=0, help='Camera index')
@click.option('--seed', default=None, type=int, help='Fixed step-order seed')
@click.option('--preview', is_flag=True, help='Show the camera preview window')
@click.pass_context
def run(ctx, camera, seed, preview):
    """Verify the person in front of the camera."""
    config = _load(ctx)
    app = LivenessApp(config, camera=camera, seed=seed, preview=preview)

    signal.signal(signal.SIGINT, app.handle_signal)
    signal.signal(signal.SIGTERM, app.handle_signal)

    try:
        verified = app.start()
    except RuntimeError as e:
        logger.error(f"Liveness check aborted: {e}")
        ctx.exit(2)
    if not verified:
        logger.warning("Liveness check did not complete")
        ctx.exit(1)


@cli.command()
@click.option('--seed', default=0, type=int, help='Step-order and landmark seed')
@click.option('--spoof', is_flag=True, help='Simulate a flat, static photo instead of a live face')
@click.option('--max-frames', default=600, type=int, help='Give up after this many frames')
@click.pass_context
def simulate(ctx, seed, spoof, max_frames):
    """Run a session against synthetic landmarks."""
    config = _load(ctx)
    cfg = config.get()

    verifier = LivenessVerifier(config, seed=seed)
    generator = SyntheticFaceGenerator(seed=seed, flat=spoof)
    subject = SimulatedSubject(generator)
    guide_box = make_guide_box(cfg.loop.frame_width, cfg.loop.frame_height,
                               cfg.guide.width_ratio, cfg.guide.height_ratio)

    last_instruction = None
    spoof_flagged = False
    result = None
    frames = 0
    for update in iter_simulation(verifier, subject, guide_box, fps=cfg.loop.target_fps, max_frames=max_frames):
        frames += 1
        spoof_flagged = spoof_flagged or update.spoof.is_spoof
        if update.instruction != last_instruction:
            last_instruction = update.instruction
            logger.info(f"[{update.step_number}/{update.total_steps}] {update.instruction}")
        if update.result is not None:
            result = update.result

    logger.info(f"Simulation finished after {frames} frames")

    if spoof:
        if result is not None or not spoof_flagged:
            logger.error("Simulated photo was not rejected")
            ctx.exit(1)
        logger.success("Simulated photo rejected as a spoof")
        return

    if result is None:
        logger.error(f"Simulated user was not verified (stuck at {verifier.session.current_step.value})")
        ctx.exit(1)
    click.echo(json.dumps(result.to_dict(), indent=2))


@cli.command(name='show-config')
@click.pass_context
def show_config(ctx):
    """Print the effective configuration as YAML."""
    config = _load(ctx)
    click.echo(yaml.safe_dump(config.get().model_dump(), sort_keys=False))


if __name__ == '__main__':
    cli()
