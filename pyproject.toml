[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sage-router"
version = "0.1.0"
description = "Translation layer between LLM chat API wire formats (OpenAI, Claude, Gemini) with Server-Sent Event helpers"
requires-python = ">=3.10"
dependencies = []
keywords = ["llm", "proxy", "openai", "claude", "gemini", "sse", "translation"]
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
    "Topic :: Internet :: Proxy Servers",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["sage_router"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
