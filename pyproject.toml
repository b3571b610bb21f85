[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "varvara"
version = "0.1.0"
description = "Peripheral devices of the Varvara computer for a Uxn virtual machine: system, console, screen, audio, controller, mouse, file and datetime"
requires-python = ">=3.10"
dependencies = []
keywords = ["uxn", "varvara", "emulator", "virtual machine", "devices"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["varvara"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
