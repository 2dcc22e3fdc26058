"""Prediction submission, risky-mode cooldown, scoring and rankings."""
