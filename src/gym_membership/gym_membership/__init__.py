"""Gym membership package.

This package is organized by feature modules (subscriptions, recovery, attendance, ...)
with a thin Flask controller layer and service/repository layers over a Directory Store.
"""
