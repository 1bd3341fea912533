"""
Repology Watcher - Monitor a project's packages and publish changes as RSS.

A Python application that polls the Repology API for one project,
detects field changes between runs and maintains an RSS 2.0 feed
of those changes.
"""

__version__ = "1.0.0"
