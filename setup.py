"""
Setup script for hanzi-review.

Hanzi Review is a spaced-repetition review engine for Chinese study
content (sentences, grammar points, characters). It serves three roles:

1. Scheduler - SM-2 intervals and ease factors per learner and item
2. Session Runner - Dashboard -> review -> summary from the terminal
3. Offline Fallback - Grades queued locally and synced later

The 'hanzi-review' command is the entry point.
"""

from setuptools import find_namespace_packages, setup

setup(
    name="hanzi-review",
    version="1.0.0",
    description="Spaced-repetition review engine with offline sync",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_namespace_packages(include=["src", "src.*"]),
    py_modules=["config"],
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Database
        "sqlalchemy>=2.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "hanzi-review=src.cli.review_cli:run",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Education",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="spaced-repetition sm2 chinese cli education offline-sync",
)
