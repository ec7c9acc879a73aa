"""
Models Package

Model training, persistence and prediction for next-day return and volatility.
"""
