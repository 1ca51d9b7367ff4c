from setuptools import setup, find_packages

setup(
    name="url-shortener",
    version="0.1.0",
    packages=find_packages(include=["shortener", "shortener.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "starlette",
        "pydantic",
        "pydantic-settings",
        "sqlalchemy[asyncio]>=2.0",
        "asyncpg",
        "uvicorn",
        "tzdata",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
            "aiosqlite",
        ],
    },
)
