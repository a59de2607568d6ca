[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "audiofetch"
version = "0.3.1"
description = "Progressive, range-based download and AES-CTR decryption of streamed audio files"
requires-python = ">=3.10"
keywords = ["audio", "streaming", "download", "range", "aes-ctr", "prefetch"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Multimedia :: Sound/Audio",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["audiofetch"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
