[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wanzhi"
version = "0.1.0"
description = "Building blocks for an API knowledge assistant: JSON-RPC transport with SSE, rate limiting, resilience, observability, LLM, embedding and rerank clients."
requires-python = ">=3.10"
keywords = [
    "mcp",
    "json-rpc",
    "sse",
    "rate-limiting",
    "circuit-breaker",
    "retry",
    "llm",
    "embeddings",
    "rerank",
    "webhook",
]
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
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "httpx",
    "redis",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["wanzhi"]

[tool.hatch.build.targets.sdist]
include = [
    "wanzhi",
    "tests",
]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
