"""
Strategy filter expressions for Reelforge.

Pure functions turning (strategy, profile settings, clip duration) into ffmpeg
video and audio filter chains. No I/O and no hidden state: the same inputs
always produce the same expression.

Every video chain ends with NORMALIZE_FILTER so overlay compositing can rely
on a fixed 1080x1920 output with square pixels whatever the strategy.
"""

import math
from typing import Optional, Union

from reelforge.models import ProfileSettings, Strategy, default_profile

TARGET_WIDTH = 1080
TARGET_HEIGHT = 1920

NORMALIZE_FILTER = (
    f"scale={TARGET_WIDTH}:{TARGET_HEIGHT}:force_original_aspect_ratio=increase,"
    f"crop={TARGET_WIDTH}:{TARGET_HEIGHT},setsar=1"
)

# FOCUS crop factor range: strength 0 keeps the full frame, 1 crops to 96%
FOCUS_CROP_MIN = 0.96
# noise strength at grain=1.0
GRAIN_MAX_STRENGTH = 12

AUDIO_FILTERS = {
    Strategy.FOCUS: "acompressor=threshold=-12dB:ratio=2:attack=200:release=1000",
    Strategy.MOTION: "atempo=1.01",
    Strategy.PUNCH: "anequalizer=c0 f=200 w=100 g=-2 t=1|c0 f=6000 w=1000 g=2 t=0",
    Strategy.CINEMA: "acompressor=threshold=-14dB:ratio=1.8:attack=250:release=1200",
}


def fmt_number(value: float) -> str:
    """Render a number for a filter argument: 6 decimals max, no trailing zeros."""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def fade_out_start(duration_seconds: float, fade_duration: float) -> float:
    return max(0.0, duration_seconds - fade_duration)


def _known_duration(duration_seconds: Optional[float]) -> float:
    if isinstance(duration_seconds, (int, float)) and duration_seconds > 0:
        return float(duration_seconds)
    return 0.0


def _fades(profile: ProfileSettings, duration_seconds: float) -> str:
    """Fade-in always; fade-out only when the clip duration is known."""
    fade_in = f"fade=t=in:st=0:d={fmt_number(profile.fade_in_duration)}"
    if not duration_seconds:
        return fade_in
    start = fade_out_start(duration_seconds, profile.fade_out_duration)
    return f"{fade_in},fade=t=out:st={fmt_number(start)}:d={fmt_number(profile.fade_out_duration)}"


def _focus(profile: ProfileSettings, duration_seconds: float) -> str:
    factor = fmt_number(1.0 - (1.0 - FOCUS_CROP_MIN) * profile.focus_strength)
    angle = fmt_number((math.pi / 8) * profile.vignette_intensity)
    return (
        f"crop=iw*{factor}:ih*{factor},"
        f"vignette=angle={angle},"
        f"eq=contrast={fmt_number(profile.contrast)}"
    )


def _motion(profile: ProfileSettings, duration_seconds: float) -> str:
    pts_factor = fmt_number(1.0 / profile.motion_speed)
    return (
        f"setpts={pts_factor}*PTS,"
        f"eq=saturation={fmt_number(profile.saturation)}:contrast={fmt_number(profile.contrast)}"
    )


def _punch(profile: ProfileSettings, duration_seconds: float) -> str:
    return (
        f"unsharp=5:5:{fmt_number(profile.sharpness)}:5:5:0.0,"
        f"eq=contrast={fmt_number(profile.contrast)},"
        f"{_fades(profile, duration_seconds)}"
    )


def _cinema(profile: ProfileSettings, duration_seconds: float) -> str:
    radians = fmt_number(math.radians(profile.rotation_angle))
    grain = int(round(GRAIN_MAX_STRENGTH * profile.grain))
    # Slight overscale before the crop hides the rotated corners
    return (
        f"rotate={radians},"
        f"scale={TARGET_WIDTH + 5}:{TARGET_HEIGHT + 10}:force_original_aspect_ratio=increase,"
        f"crop={TARGET_WIDTH}:{TARGET_HEIGHT},"
        f"noise=c0s={grain}:allf=t,"
        f"{_fades(profile, duration_seconds)}"
    )


_VIDEO_BUILDERS = {
    Strategy.FOCUS: _focus,
    Strategy.MOTION: _motion,
    Strategy.PUNCH: _punch,
    Strategy.CINEMA: _cinema,
}


def build_video_filter(
    strategy_id: Union[Strategy, str],
    duration_seconds: Optional[float] = None,
    profile: Optional[ProfileSettings] = None,
) -> str:
    """
    Build the video filter chain for a strategy.

    Args:
        strategy_id: Strategy or its wire id ("IG1".."IG4")
        duration_seconds: Clip duration; unknown or <= 0 disables fade-out
        profile: Profile settings (default: the strategy's default profile)

    Returns:
        Comma-separated filter chain ending with NORMALIZE_FILTER

    Raises:
        ValueError: If strategy_id is not a known strategy
    """
    strategy = Strategy(strategy_id)
    profile = profile or default_profile(strategy)
    recipe = _VIDEO_BUILDERS[strategy](profile, _known_duration(duration_seconds))
    return f"{recipe},{NORMALIZE_FILTER}"


def build_audio_filter(
    strategy_id: Union[Strategy, str],
    profile: Optional[ProfileSettings] = None,
) -> str:
    """Audio filter for a strategy. Fixed per strategy; profile is accepted for symmetry."""
    return AUDIO_FILTERS.get(Strategy(strategy_id), "")
