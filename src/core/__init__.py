"""Core domain package for the event pager.

Core holds the window matching, fingerprinting, message building and the
delivery queue without any HTTP or filesystem code, so every rule can be
exercised with in-memory fakes.
"""
