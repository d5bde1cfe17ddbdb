"""Gait feature extraction.

Architecture
------------
1. **Step period** (`extractor.py`)
   - Autocorrelation of the acceleration magnitude, restricted to the
     cadence band and refined by parabolic interpolation
   - Peak-to-peak stride interval variance

2. **Intensity and spectrum** (`extractor.py`)
   - Per-axis RMS, signal magnitude area, magnitude spread
   - Band energy fractions of the acceleration magnitude

Vectors are only comparable when extracted with the same
:class:`FeatureConfig`.
"""

from gait_auth.features.extractor import FEATURE_NAMES, FeatureConfig, FeatureExtractor

__all__ = ["FEATURE_NAMES", "FeatureConfig", "FeatureExtractor"]
