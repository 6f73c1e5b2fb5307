"""Setup script for memochron, the iCalendar ingestion engine."""

import os
from pathlib import Path

from setuptools import find_packages, setup
from setuptools.command.develop import develop
from setuptools.command.install import install


def post_install_setup():
    """Create the per-user cache directory used for event snapshots."""
    try:
        cache_dir = Path.home() / ".cache" / "memochron"
        cache_dir.mkdir(parents=True, exist_ok=True)
        if hasattr(os, "chmod"):
            os.chmod(cache_dir, 0o755)
    except OSError as e:
        print(f"Warning: Post-install setup failed: {e}")
        print("Snapshots will be disabled until ~/.cache/memochron can be created.")


class PostInstallCommand(install):
    """Custom install command with post-install setup."""

    def run(self):
        install.run(self)
        post_install_setup()


class PostDevelopCommand(develop):
    """Custom develop command with post-install setup."""

    def run(self):
        develop.run(self)
        post_install_setup()


readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Runtime and test requirements share requirements.txt; pytest lines go to the test extra
requirements_file = Path(__file__).parent / "requirements.txt"
requirements = []
test_requirements = []

if requirements_file.exists():
    for line in requirements_file.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "pytest" in line:
            test_requirements.append(line)
        else:
            requirements.append(line)

setup(
    name="memochron",
    version="0.3.0",
    description="iCalendar feed ingestion with recurrence expansion and timezone normalization",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="MemoChron Contributors",
    url="https://github.com/formax68/memochron",
    packages=find_packages(include=["memochron", "memochron.*"]),
    include_package_data=True,
    install_requires=requirements,
    extras_require={
        "test": test_requirements,
        "dev": test_requirements
        + [
            "black>=23.0.0",
            "isort>=5.12.0",
            "mypy>=1.0.0",
        ],
    },
    python_requires=">=3.10",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Office/Business :: Scheduling",
        "Framework :: AsyncIO",
    ],
    keywords="calendar ics icalendar rrule timezone outlook google-calendar async",
    entry_points={
        "console_scripts": [
            "memochron=memochron.__main__:main",
        ],
    },
    package_data={"memochron": ["py.typed"]},
    cmdclass={
        "install": PostInstallCommand,
        "develop": PostDevelopCommand,
    },
    zip_safe=False,
)
