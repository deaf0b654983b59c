from setuptools import setup, find_packages
import sys

assert sys.version_info >= (3, 8), (
    "Please use Python version 3.8 or higher, "
    "lower versions are not supported"
)

extras = {
    "dev": [
        "pytest",
        "coverage",
        "flake8",
        "flake8-print",
    ],
}
extras["all"] = sum(extras.values(), [])


setup(
    name="bayesglm",
    version="0.1.0",
    description="EM estimation of SPDE hyperparameters for spatial "
                "Bayesian GLMs",
    license="Apache 2",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        "numpy",
        "scipy",
        "scikit-learn",
    ],
    extras_require=extras,
)
