"""Application package for the StudyBuddy collaboration backend.

This package exposes the catalog (modules, topics, chapters) and
notification APIs together with the service, repository and model
modules behind them. Individual modules contain the concrete
implementations and documentation.
"""
