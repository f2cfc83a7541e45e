"""Setup configuration for the audit-queue service."""
from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="audit-queue",
    version="0.1.0",
    author="Audit Queue Contributors",
    description="Durable job queue that runs website audits and emails each report once",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Development Status :: 3 - Alpha",
        "Framework :: AsyncIO",
    ],
    python_requires=">=3.9",
    install_requires=[
        "asyncpg>=0.27.0",
        "aiohttp>=3.8.0",
        "boto3>=1.26.0",
        "pydantic>=2.0.0",
        "python-dateutil>=2.8.0",
    ],
    extras_require={
        "fastapi": [
            "fastapi>=0.110.0",
            "uvicorn[standard]>=0.20.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "httpx>=0.24.0",
            "fastapi>=0.110.0",
            "testcontainers[postgres]>=4.0.0",
            "black>=23.0.0",
            "mypy>=1.0.0",
            "flake8>=6.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "audit-queue-tick=audit_queue.tick_main:main",
            "audit-queue-server=audit_queue.app:main",
        ],
    },
)
