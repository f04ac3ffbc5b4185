from setuptools import setup, find_packages

setup(
    name="qtoolchain",
    version="0.1.0",
    description="Sparse quantum circuit simulator with sticky measurement and a quantum assembler",
    packages=find_packages(include=["qtoolchain", "qtoolchain.*"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.21",
        "scipy>=1.7",
        "qiskit>=1.0",
        "networkx>=2.6",
    ],
    extras_require={
        "dev": ["pytest>=7.0"],
    },
)
