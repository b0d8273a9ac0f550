from setuptools import setup, find_packages

# Parse README
from pathlib import Path
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

setup(
    name="invnet",
    version="0.1.0",
    author="invnet developers",
    description="PyTorch package for memory-efficient invertible networks.",
    long_description_content_type="text/markdown",
    long_description=long_description,
    install_requires=[
        "torch>=2.0.0",
        "numpy",
        "scikit-learn",
        "pyyaml",
        "pytorch_lightning>=2.0.0",
        "wandb"
    ],
    extras_require={
        "test": ["pytest"],
    },
    python_requires='>=3.10',
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
    ],
    packages=find_packages(
        where=".",
        exclude=["experiments*", "data*", "test*"]
    ),
)
