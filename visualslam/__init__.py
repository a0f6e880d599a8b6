"""Feature-based visual SLAM building blocks: frames, two-view initialization, pose conversions, an RGB-D loader and AR planes."""

__version__ = "0.1.0"

__all__ = [
    "ar",
    "converter",
    "epipolar",
    "frame",
    "initializer",
    "rgbd",
]