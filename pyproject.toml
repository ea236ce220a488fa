[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "semindex"
version = "0.1.0"
description = "Semantic file indexing and search service backed by text embeddings and an HNSW vector index"
requires-python = ">=3.10"
keywords = ["semantic search", "embeddings", "hnsw", "indexing", "vector database", "flask"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: Indexing/Search",
]
dependencies = [
    "numpy",
    "flask",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
semindex = "semindex.app:main"

[tool.hatch.build.targets.wheel]
packages = ["semindex"]

[tool.pytest.ini_options]
addopts = "-ra"
