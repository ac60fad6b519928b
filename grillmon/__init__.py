"""
grillmon — Grill Monitor backend: cook-session persistence and multi-device sync.
"""
