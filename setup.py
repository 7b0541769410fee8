from setuptools import setup, find_packages
from pathlib import Path

description = "Set up DoD CAC smart card support and trust anchors on " \
    "Fedora."

here = Path(__file__).parent  # return directory of current file
readme = Path(here, "README.md")
requirements = Path(here, "requirements.txt")

with requirements.open() as f:
    reqs = f.readlines()

with readme.open() as f:
    long_description = f.read()

test_reqs = [
    "pytest",
]

setup(
    name="FedoraCAC",
    version="1.4.4",
    description=description,
    long_description=long_description,
    long_description_content_type='text/markdown',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Environment :: Console',
        'Intended Audience :: System Administrators',
        'Operating System :: POSIX :: Linux',
        'Topic :: Security :: Cryptography',
        'Topic :: System :: Systems Administration',
    ],
    packages=find_packages(exclude=["test", "test.*"]),
    python_requires='>=3.9',
    install_requires=reqs,
    extras_require={
        'test': test_reqs
    },
    include_package_data=True,
    entry_points={
        "console_scripts": ["fedora-cac=FedoraCAC.cli_commands:cli"]
    }
)
