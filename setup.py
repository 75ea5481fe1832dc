"""Setup configuration for batchctl."""

from setuptools import setup, find_packages

setup(
    name="batchctl",
    version="1.0.0",
    description="Rate-limited batch job orchestration with per-item retry and progress events",
    author="Your Name",
    packages=find_packages(include=["batchctl", "batchctl.*"]),
    install_requires=[
        "click>=8.1.7",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
    ],
    extras_require={
        "test": ["pytest>=7.4"],
    },
    entry_points={
        "console_scripts": [
            "batchctl=batchctl.cli:cli",
        ],
    },
    python_requires=">=3.8",
)
