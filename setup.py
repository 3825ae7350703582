# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.

from os import path
from setuptools import setup  # type: ignore

PACKAGE_NAME = "ledgernet"
VERSION = "0.1.0"

path_here = path.abspath(path.dirname(__file__))

with open(path.join(path_here, "README.md"), encoding="utf-8") as f:
    long_description = f.read()

with open(path.join(path_here, "requirements.txt"), encoding="utf-8") as f:
    requirements = f.read().splitlines()

setup(
    name=PACKAGE_NAME,
    version=VERSION,
    description="Local multi-node network harness for testing a proof-of-stake ledger",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="Apache License 2.0",
    author="ledgernet Team",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
    ],
    packages=[PACKAGE_NAME],
    package_data={PACKAGE_NAME: ["templates/*.jinja"]},
    python_requires=">=3.8",
    install_requires=requirements,
    extras_require={"test": ["pytest"]},
    entry_points={
        "console_scripts": [
            "ledgernet = ledgernet.main:main",
        ]
    },
    include_package_data=True,
)
