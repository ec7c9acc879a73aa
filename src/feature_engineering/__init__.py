"""
Feature engineering for daily bar series.

Usage:
    from src.feature_engineering.feature_engine import FeatureEngine

    vectors = FeatureEngine().generate(bars)
"""
