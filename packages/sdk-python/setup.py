"""Setup for Ledgerflow Python SDK."""

from setuptools import find_packages, setup

setup(
    name="ledgerflow-sdk",
    version="0.1.0",
    description="Ledgerflow API Python SDK",
    packages=find_packages(),
    install_requires=[
        "requests>=2.31.0",
    ],
    python_requires=">=3.11",
)
