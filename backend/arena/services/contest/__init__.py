"""Contest domain services: sessions, countdowns, submission and scoring.

This package contains the session/submission state machine and should be
imported by HTTP routes and socket handlers, keeping transport concerns
separated from the at-most-once submit rules.
"""
