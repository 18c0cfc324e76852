#!/usr/bin/env python3
"""Setup script for the TrueNAS Python SDK."""

from setuptools import setup, find_packages
import os

# Read the README file
here = os.path.abspath(os.path.dirname(__file__))
try:
    with open(os.path.join(here, 'README.md'), encoding='utf-8') as f:
        long_description = f.read()
except FileNotFoundError:
    long_description = 'TrueNAS SDK for Python - websocket API client for VMs and apps'

setup(
    name='truenas-sdk',
    version='0.1.0',
    description='TrueNAS SDK for Python - websocket API client for VMs and apps',
    long_description=long_description,
    long_description_content_type='text/markdown',
    author='TrueNAS SDK Team',
    packages=find_packages(include=['truenas_sdk', 'truenas_sdk.*', 'truenas_cli', 'truenas_cli.*']),
    include_package_data=True,
    python_requires='>=3.10',
    install_requires=[
        'pydantic>=2.0.0',
        'python-dotenv>=1.0.0',
        'websockets>=13.0',
        'orjson>=3.8.0',
    ],
    extras_require={
        'dev': [
            'pytest>=7.0.0',
            'pytest-asyncio>=0.21.0',
            'black>=23.0.0',
            'isort>=5.12.0',
            'mypy>=1.4.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'truenas=truenas_cli.cli:main',
        ],
    },
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Software Development :: Libraries :: Python Modules',
        'Topic :: System :: Systems Administration',
    ],
    keywords='truenas websocket api client vm apps',
)
