[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sysyc"
version = "0.1.0"
description = "A small SysY compiler pipeline: lowers a SysY syntax tree to Koopa IR and Koopa IR to RISC-V assembly"
requires-python = ">=3.10"
dependencies = []
keywords = ["compiler", "sysy", "koopa", "riscv", "ir", "codegen"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Compilers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["sysyc"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
