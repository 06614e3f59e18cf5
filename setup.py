"""
Setup script for the Flaky Test Scanner package.
"""

from setuptools import setup, find_packages
import os

# Read the README
readme_path = os.path.join(os.path.dirname(__file__), 'README.md')
if os.path.exists(readme_path):
    with open(readme_path, 'r', encoding='utf-8') as f:
        long_description = f.read()
else:
    long_description = "Static analysis of JavaScript test files for flaky-test anti-patterns."

setup(
    name="flakescanner",
    version="1.0.0",
    author="Flake Scanner Team",
    author_email="flakescanner@example.com",
    description="Static detector and fixer for flaky patterns in JavaScript test suites",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/flakescanner/flakescanner",
    packages=find_packages(exclude=["tests", "tests.*", "examples", "examples.*"]),
    python_requires=">=3.9",
    install_requires=[
        "tree-sitter>=0.23",
        "tree-sitter-javascript>=0.23",
        "pyyaml>=6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-cov>=4.0",
            "black>=23.0",
            "mypy>=1.0",
            "ruff>=0.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "flakescanner=flakescanner.cli:main",
            "flakescan=flakescanner.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Quality Assurance",
        "Topic :: Software Development :: Testing",
    ],
    keywords="flaky-tests, static-analysis, javascript, jest, playwright, cypress, testing-library",
    project_urls={
        "Bug Reports": "https://github.com/flakescanner/flakescanner/issues",
        "Documentation": "https://github.com/flakescanner/flakescanner#readme",
        "Source": "https://github.com/flakescanner/flakescanner",
    },
)
