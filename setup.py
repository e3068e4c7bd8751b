"""
Setup configuration for bitget-trading package.
"""
from setuptools import setup, find_packages

setup(
    name="bitget-trading",
    version="0.1.0",
    description="Natural-language trade commands for Bitget spot and USDT-M futures",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    author="Trading System Team",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*", "scripts"]),
    python_requires=">=3.9",
    install_requires=[
        "requests>=2.28.0,<3.0",
        "aiohttp>=3.8.0,<4.0",
        "pyyaml>=6.0,<7.0",
        "loguru>=0.7.0,<1.0",
        "pydantic>=2.0.0,<3.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
        "dev": [
            "black>=23.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
            "pytest-cov>=4.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "bitget-trade=bitget_trading.cli:main",
            "bitget-ticker=bitget_trading.cli:watch_main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
