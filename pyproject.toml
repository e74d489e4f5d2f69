[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cantools_lite"
version = "0.1.0"
description = "CAN frame text formats, log converters and ISO-TP / SAE J1939 command line tools for Linux SocketCAN"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "can",
    "can-bus",
    "socketcan",
    "canfd",
    "isotp",
    "iso15765",
    "j1939",
    "candump",
    "asc",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: Manufacturing",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems :: Controller Area Network (CAN)",
    "Topic :: Software Development :: Embedded Systems :: Controller Area Network (CAN) :: J1939",
    "Topic :: Utilities",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
log2long = "cantools_lite.log2long:main"
log2asc = "cantools_lite.log2asc:main"
j1939acd = "cantools_lite.j1939acd:main"
j1939cat = "cantools_lite.j1939cat:main"
j1939sr = "cantools_lite.j1939sr:main"
isotpsend = "cantools_lite.isotpsend:main"
isotpserver = "cantools_lite.isotpserver:main"
isotpsniffer = "cantools_lite.isotpsniffer:main"

[tool.hatch.build.targets.wheel]
packages = ["cantools_lite"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
