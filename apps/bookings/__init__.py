"""Bookings app package.

This app holds the booking conflict-resolution core: the conflict
detector, the admission engine that creates and changes bookings under
a per-resource lock, the lifecycle state machine and the availability
cache that memoizes conflict and availability answers.
"""
