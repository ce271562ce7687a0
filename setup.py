#!/usr/bin/env python3
"""
Setup script for mabdose (population dose selection for long-acting antibodies)
"""

from setuptools import setup, find_packages

with open("requirements.txt", "r") as f:
    requirements = [line.strip() for line in f if line.strip() and not line.startswith("#")]

setup(
    name="mabdose",
    version="1.0.0",
    author="mabdose developers",
    description="Population PK/PD dose selection for long-acting antibody therapeutics",
    long_description="Two-compartment PK simulation, neutralization-efficacy transform and "
                     "percentile-based dose and loading-dose optimization",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": ["mabdose=mabdose.main:main"],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
        "Topic :: Scientific/Engineering :: Medical Science Apps.",
    ],
)
