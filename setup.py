#!/usr/bin/env python3
"""
Setup script for remotefn
"""

from setuptools import setup, find_packages
import os

# Read the README file
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Read requirements


def read_requirements(filename):
    """Read requirements from file"""
    if os.path.exists(filename):
        with open(filename, "r", encoding="utf-8") as f:
            return [
                line.strip() for line in f
                if line.strip() and not line.startswith("#")
            ]
    return []


setup(
    name="remotefn",
    version="0.1.0",
    author="Mathieu Gosbee",
    author_email="mail@matbee.com",
    description=(
        "Package Python functions with their lexical environment "
        "for invocation in another process"
    ),
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/matbeeDOTcom/remotemedia-sdk",
    packages=find_packages(where=".", exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: System :: Distributed Computing",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=[
        "cloudpickle>=3.0.0",
        "numpy>=1.21.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "dev": read_requirements("requirements-dev.txt"),
    },
    zip_safe=False,
)
