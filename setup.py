from setuptools import setup, find_packages

setup(
    name="atlas_graph",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "requests",
        "pyyaml",
        "networkx>=3.0",
        "numpy",
        "tqdm>=4.60",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    python_requires=">=3.10",
    description="A local knowledge-graph engine with traversal, embeddings and merge.",
)
