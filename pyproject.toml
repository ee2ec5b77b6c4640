[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "exynostools"
version = "0.1.0"
description = "Boot image and DTBH device-tree image tools, plus vibrator and USB Type-C sysfs services, for Exynos devices"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "android",
    "boot image",
    "mkbootimg",
    "unpackbootimg",
    "device tree",
    "dtb",
    "dtbh",
    "exynos",
    "sysfs",
    "usb type-c",
    "vibrator",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Boot",
    "Topic :: Software Development :: Embedded Systems",
    "Topic :: Utilities",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
mkbootimg = "exynostools.mkbootimg:main"
unpackbootimg = "exynostools.unpackbootimg:main"
mkdtbimg = "exynostools.mkdtbimg:main"
unpackdtbhimg = "exynostools.unpackdtbhimg:main"

[tool.hatch.build.targets.wheel]
packages = ["exynostools"]

[tool.hatch.build.targets.sdist]
include = ["exynostools", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"
