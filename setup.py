"""Setup configuration for the Modchat server."""

from setuptools import setup, find_packages

setup(
    name="modchat",
    version="0.1.0",
    description="A real-time moderated chat server with an AI moderation assistant",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "aiohttp>=3.9",
        "aiosqlite>=0.19",
        "jsonschema>=4.0",
        "openai>=1.40",
        "prompt_toolkit>=3.0",
        "python-dotenv>=1.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "modchat=modchat.main:main",
        ],
    },
)
