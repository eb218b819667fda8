[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pdbfetch"
version = "0.1.0"
description = "Fetch PDB symbol files for PE images from a symbol server, with a small PE/COFF parser"
requires-python = ">=3.10"
dependencies = []
keywords = ["pdb", "pe", "coff", "symbols", "codeview", "debugging", "portable-executable"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Debuggers",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
pdbfetch = "pdbfetch.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["pdbfetch"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
