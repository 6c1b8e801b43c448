"""
Setup configuration for Morrisons EDI Dispatcher
"""
from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="morrisons-edi-dispatcher",
    version="1.0.0",
    author="Your Name",
    author_email="your.email@example.com",
    description="EDIFACT INVOIC builder and dispatcher for paid sales invoices",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/morrisons-edi-dispatcher",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Office/Business :: Financial :: Accounting",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0.0",
        "python-dateutil>=2.8.2",
        "cryptography>=41.0.0",
        "requests>=2.31.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
            "mypy>=1.5.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "morrisons-edi=morrisons_edi.main:main",
        ],
    },
)
