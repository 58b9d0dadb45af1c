"""Bucket store adapters.

This package provides the atomic consume primitive the admission engine is
built on: an in-process store for single-instance use and a Redis store that
coordinates every instance sharing one server.
"""
