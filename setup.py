# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""Setup configuration for typed-docstore package."""

from pathlib import Path

from setuptools import find_packages, setup

# Read the README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding="utf-8")

setup(
    name="typed-docstore",
    version="0.1.0",
    author="typed-docstore contributors",
    description="Typed query compilation and collection access for MongoDB-style document stores",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["typed_docstore", "typed_docstore.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=[
        "pymongo>=4.6.3",  # MongoDB client, also provides bson
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "pylint>=3.0.0",
            "mypy>=1.0.0",
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
        ],
    },
)
