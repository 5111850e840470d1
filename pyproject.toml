[build-system]
requires = ["setuptools>=61.0"]
build-backend = "setuptools.build_meta"

[project]
name = "gpumetrics"
version = "0.1.0"
description = "Collect GPU, NVSwitch, NvLink and CPU metrics and serve them in the Prometheus text format"
requires-python = ">=3.10"
dependencies = []
keywords = ["gpu", "metrics", "prometheus", "exporter", "monitoring", "nvlink", "mig"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.setuptools.packages.find]
include = ["gpumetrics*"]

[tool.pytest.ini_options]
addopts = "-ra"
