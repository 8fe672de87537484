"""Feeding domain services: scoring, caretakers, timers and the coop protocol.

This package holds the cooperative feeding-session core. It knows nothing
about Flask or the chat relay; transports, clocks and schedulers are
passed in, keeping transport concerns separated from session mechanics.
"""
