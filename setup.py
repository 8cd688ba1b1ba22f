from setuptools import setup, find_packages

setup(
    name="librarian",
    version="1.0.0",
    description="Public-domain book ingestion with AI genre classification",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        "openai>=1.0",
        "duckdb>=0.9",
        "pydantic>=1.10",
        "requests>=2.28",
        "pypdf>=3.0",
        "fastapi>=0.100",
        "uvicorn>=0.20",
        "typer>=0.9",
        "rich>=13.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "httpx>=0.24",
        ],
    },
    entry_points={
        'console_scripts': [
            'librarian=librarian.cli:app',
        ],
    },
)
