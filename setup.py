"""
VideoDocs setuptools build script.

Usage:
    # Development (editable install):
    pip install -e .

    # With test tooling:
    pip install -e ".[test]"
"""

from setuptools import setup, find_namespace_packages

APP_NAME = "videodocs"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Turn a video into a structured, schema-validated document",
    packages=find_namespace_packages(include=["videodocs", "videodocs.*"]),
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
        "openai>=1.0.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "test": ["pytest>=7.0", "httpx"],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "videodocs=main:main",
        ],
    },
)
