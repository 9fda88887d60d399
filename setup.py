#!/usr/bin/env python3
"""
SuperRay TUI - Xray proxy client with a terminal dashboard
Setup configuration
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text() if readme_file.exists() else ""

requirements = [
    'PyYAML>=6.0',
    'rich>=13.0.0',
    'requests>=2.31.0',
    'dnspython>=2.4.0',
    'textual>=0.47.0',
    'python-dotenv>=1.0.0',
]

setup(
    name="superray-tui",
    version="1.0.0",
    author="SuperRay TUI Team",
    author_email="info@example.com",
    description="Terminal client for Xray proxies powered by libsuperray",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=['tests', 'tests.*']),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: End Users/Desktop",
        "Topic :: System :: Networking",
        "Topic :: Internet :: Proxy Servers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: POSIX :: Linux",
        "Operating System :: MacOS",
    ],
    python_requires=">=3.8",
    install_requires=requirements,
    extras_require={
        'dev': [
            'pytest>=7.4.0',
            'pytest-cov>=4.1.0',
            'pytest-timeout>=2.1.0',
            'black>=23.7.0',
            'flake8>=6.1.0',
            'mypy>=1.5.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'superray-tui=superray_tui.cli.interface:main',
        ],
    },
    zip_safe=False,
    keywords='xray v2ray proxy vless vmess trojan shadowsocks tun tui',
)
