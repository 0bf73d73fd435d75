import re
from pathlib import Path

from setuptools import find_packages, setup  # type: ignore

_dir = Path(__file__).resolve().parent
VERSION = _dir.joinpath("VERSION").open().read().strip()
README = _dir.joinpath("README.md").open().read()


def load_reqs(filename):
    with _dir.joinpath(filename).open() as reqs_file:
        return [
            line.strip()
            for line in reqs_file.readlines()
            if line.strip()
            and not (re.match(r"\s*#", line) or re.match("-e", line) or re.match("-r", line))
        ]


requirements = load_reqs("requirements.txt")
requirements_test = load_reqs("requirements-test.txt")

setup(
    name="execution_context",
    version=VERSION,
    author="nucliadb Authors",
    author_email="nucliadb@nuclia.com",
    description="Execution and local contexts for threads, generators, coroutines and tasks",
    long_description=README,
    long_description_content_type="text/markdown",
    license="AGPL",
    url="https://github.com/nuclia/nucliadb",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: GNU Affero General Public License v3 or later (AGPLv3+)",
        "Framework :: AsyncIO",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3 :: Only",
    ],
    python_requires=">=3.9",
    include_package_data=True,
    extras_require={
        "test": requirements_test,
    },
    package_data={"": ["*.txt", "*.md"], "execution_context": ["py.typed"]},
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=requirements,
)
