"""
Plane Tracker

Polls aircraft traffic around a reference point during daylight, flags
watch-listed aircraft and emails a digest when they newly appear.
"""
