#!/usr/bin/env python3
"""
Setup script for the realtime chat client
"""

from setuptools import setup, find_packages

setup(
    name="realtime-chat-client",
    version="0.0.1",
    description="Realtime chat client core: connection lifecycle, timeline and presence reconciliation",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "websockets==15.0",
        "httpx==0.27.2",
        "click==8.1.7",
        "typer==0.12.3",
        "rich==13.9.2",
        "aioconsole==0.8.1",
    ],
    extras_require={
        "test": [
            "pytest==8.4.2",
            "pytest-asyncio==1.2.0",
        ],
    },
    python_requires=">=3.10",
    entry_points={
        'console_scripts': [
            'chat-client=client.chat_cli:main',
        ],
    },
)
