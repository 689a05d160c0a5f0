#!/usr/bin/env python3
"""Setup script for shelfreview."""

from setuptools import setup, find_packages

def read_requirements(filename):
    """Read requirements from file."""
    with open(filename, 'r') as f:
        return [line.strip() for line in f if line.strip() and not line.startswith('#')]

def read_readme():
    """Read README file."""
    with open('README.md', 'r', encoding='utf-8') as f:
        return f.read()

setup(
    name="shelfreview",
    version="1.0.0",
    description="Interactive review of automatically renamed ebooks and documents",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    packages=find_packages(include=["shelfreview", "shelfreview.*"]),
    include_package_data=True,
    install_requires=read_requirements('requirements.txt'),
    extras_require={
        'dev': read_requirements('requirements-dev.txt'),
        'test': read_requirements('requirements-dev.txt'),
    },
    entry_points={
        'console_scripts': [
            'shelfreview=shelfreview.cli:app',
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Utilities",
    ],
    python_requires=">=3.11",
    keywords="ebook, rename, metadata, organizer, calibre",
)
