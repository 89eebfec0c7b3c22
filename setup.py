from setuptools import setup, find_packages


setup(
    name="criage-archive",
    version="0.1",
    packages=find_packages(include=["criage_archive", "criage_archive.*"]),
    description="Package archive manager for criage: tar.zst/tar.lz4/tar.xz/tar.gz/zip with embedded metadata.",
    author="criage-oss",
    python_requires=">=3.8",
    install_requires=[
        "zstandard>=0.22.0",
        "lz4>=4.3.2",
        "PyYAML>=6.0.1",
    ],
    extras_require={
        "test": ["pytest>=7.4"],
    },
    entry_points={
        "console_scripts": [
            "criage-archive=criage_archive.cli:main",
        ]
    },
)
