"""
Services package for the Autonomic Balance Estimator.

This package contains stateful service objects built on top of utils:
- Measurement session: calibration baseline, blink tracking and bounded
  evaluation history for the app-wide measurement
"""
