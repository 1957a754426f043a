[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "turbocalm"
version = "0.1.0"
description = "Evolutionary calibration of KV-cache quantization profiles using CMA-ES and Pareto-front tracking"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "quantization",
    "calibration",
    "cma-es",
    "pareto",
    "multi-objective",
    "kv-cache",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
    "Topic :: Scientific/Engineering :: Mathematics",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["turbocalm"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]
