"""
Setup script for Orchestrator Core
"""
from setuptools import setup, find_packages


setup(
    name="orchestrator-core",
    version="1.0.0",
    description="Local service orchestrator with HTTP/WebSocket control API",
    packages=find_packages(include=["orchestrator_core", "orchestrator_core.*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.100",
        "uvicorn>=0.23",
        "pydantic>=2.0",
        "aiohttp>=3.8",
        "psutil>=5.9",
        "rich>=13.0",
        "PyYAML>=6.0",
        "python-multipart>=0.0.6",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
            "httpx>=0.24",
        ],
    },
    entry_points={
        "console_scripts": [
            "orchestrator=orchestrator_core.cli:main",
        ],
    },
    zip_safe=False,
)
