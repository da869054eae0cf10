"""
Setup script for resc.
"""
import pathlib

from packaging.requirements import Requirement
from setuptools import find_packages, setup


def parse_requirements(name):
    with pathlib.Path(name).open() as requirements_txt:
        return [
            str(Requirement(line))
            for line in (raw.split("#", 1)[0].strip() for raw in requirements_txt)
            if line
        ]


setup(
    name="resc",
    version="0.1.0",
    description="Replay smart-contract transactions against a node and record execution statistics.",
    packages=find_packages(where="src"),
    package_dir={
        "": "src",
    },
    include_package_data=True,
    zip_safe=False,
    install_requires=parse_requirements("requirements.txt"),
    extras_require={
        "test": parse_requirements("dev-requirements.txt"),
    },
    entry_points={
        "console_scripts": [
            "resc=resc.cli:main",
        ],
    },
    python_requires=">=3.10",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
