"""
Setup for the Clibgit2 XCFramework build system

Build Requirements (for running a build, not for installing this package):
- macOS with Xcode and the command line tools (xcodebuild, libtool, lipo, make)
- CMake >= 3.14
- Perl (OpenSSL's Configure script)

Parallel Build Support:
- Tasks run one at a time unless told otherwise
- Override with: clibgit2-build build -j N
- Or set environment: export CLIBGIT2_BUILD_JOBS=N

Outputs:
- Clibgit2.xcframework with slices for iOS, the iOS simulator,
  Mac Catalyst and macOS
- build.log with the output of every task
"""

from pathlib import Path
from setuptools import setup, find_packages

# Read README for long description
readme_path = Path("README.md")
long_description = ""
if readme_path.exists():
    with open(readme_path, "r", encoding="utf-8") as f:
        long_description = f.read()

setup(
    name="clibgit2-build",
    version="1.8.4",
    description="Builds libgit2, libssh2 and OpenSSL into a static XCFramework for Apple platforms",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["clibgit2_build", "clibgit2_build.*"]),
    package_data={
        "clibgit2_build": [
            "config/*.yaml",
            "resources/module.modulemap",
        ]
    },
    include_package_data=True,
    entry_points={
        "console_scripts": [
            "clibgit2-build=clibgit2_build.main:main",
        ],
    },
    zip_safe=False,
    python_requires=">=3.11.4",
    install_requires=[
        "PyYAML>=6.0",
        "pydantic>=2.0",
        "httpx>=0.24",
    ],
    extras_require={
        "dev": [
            "pytest",
            "pytest-cov",
        ]
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Operating System :: MacOS :: MacOS X",
        "Topic :: Software Development :: Build Tools",
    ],
)
