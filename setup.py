#!/usr/bin/env python3
"""
Setup script for rrd-archive.
"""

from setuptools import setup, find_packages

# Most configuration is in pyproject.toml
# This file exists for compatibility with older pip versions

setup(
    packages=find_packages(include=["rrd_archive", "rrd_archive.*"]),
)
