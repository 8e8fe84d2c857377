"""Video Autopilot: scheduled research → script → video → distribution pipeline."""

__version__ = "0.1.0"
