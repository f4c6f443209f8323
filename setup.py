#!/usr/bin/env python3
"""
Setup script for the managed Kafka e2e suite
"""

from setuptools import setup, find_packages

setup(
    name="managed-kafka-e2e",
    version="0.1.0",
    packages=find_packages(include=["kafka_e2e", "kafka_e2e.*"]),
    python_requires=">=3.9",
    install_requires=[
        # 🌐 HTTP
        "httpx>=0.25.2",

        # 📋 Data Validation & Settings
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "python-dotenv>=1.0.0",

        # 📬 Message Queue
        "confluent-kafka>=2.3.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
)
