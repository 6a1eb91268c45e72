[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tanuki"
version = "0.1.0"
description = "Agent state, load balancing, workstream scheduling and orchestration for multi-agent coding workflows"
requires-python = ">=3.10"
dependencies = []
keywords = ["agents", "orchestration", "tasks", "workstreams", "scheduling", "load-balancing"]
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
    "Topic :: Software Development",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tanuki"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
