"""Setup configuration for ragmodule package."""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="ragmodule",
    version="0.1.0",
    author="ragmodule Contributors",
    description="Embed, store and semantically search text with local embeddings, Chroma and SQL document stores",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=8.2.0",
            "pytest-cov>=4.1.0",
            "pytest-mock>=3.12.0",
            "freezegun>=1.4.0",
            "hypothesis>=6.98.0",
        ],
        "mysql": [
            "PyMySQL>=1.1.0",
        ],
        "postgres": [
            "psycopg2-binary>=2.9.9",
        ],
    },
    include_package_data=True,
    package_data={
        "ragmodule": ["py.typed"],
    },
)
