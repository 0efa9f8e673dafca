"""Setup file for development installation."""

from setuptools import setup, find_namespace_packages

setup(
    name="mediai-chat",
    version="0.1.0",
    packages=find_namespace_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "fastapi>=0.110",
        "pydantic>=2.5",
        "structlog>=23.1",
        "google-generativeai>=0.5",
        "openai>=1.0",
        "sqlalchemy[asyncio]>=2.0",
        "aiosqlite>=0.19",
        "bcrypt>=4.0",
        "itsdangerous>=2.1",
        "prometheus-client>=0.17",
        "opentelemetry-instrumentation-fastapi>=0.41b0",
        "uvicorn>=0.23",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.21",
            "httpx>=0.24",
        ],
    },
)
