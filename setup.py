"""Setup script for the yesimbot orchestration core."""

from setuptools import setup, find_namespace_packages

setup(
    name="yesimbot-core",
    version="0.1.0",
    description="Conversational orchestration engine over interchangeable LLM backends",
    packages=find_namespace_packages(include=["yesimbot", "yesimbot.*"], exclude=["yesimbot.tests*"]),
    python_requires=">=3.10",
    install_requires=[
        "pyyaml>=6.0",
        "httpx>=0.25.0",
        "lxml>=4.9",
        "numpy>=1.24",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "yesimbot=yesimbot.main:main",
        ],
    },
    package_data={
        "yesimbot.config": ["default_config.yaml"],
    },
)
