"""Setup file for the clickhouse_transfer package."""

from setuptools import setup, find_packages

setup(
    name="clickhouse-transfer",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.9",
    install_requires=[
        "fastapi",
        "starlette",
        "uvicorn",
        "pydantic>=2",
        "pydantic-settings",
        "pandas",
        "httpx",
        "python-multipart"
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio"
        ]
    },
    entry_points={
        "console_scripts": [
            "clickhouse-transfer=clickhouse_transfer.backend.main:run",
        ],
    },
)
