from setuptools import find_packages, setup

setup(
    name="boostbridge",
    version="0.1.0",
    description="Resource-safe ctypes boundary over the XGBoost native library",
    packages=find_packages(include=["boostbridge", "boostbridge.*"]),
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.24",
        "torch>=2.0",
        "pandas>=1.5",
        "scikit-learn>=1.2",
        # ships libxgboost, the shared object loaded through ctypes
        "xgboost>=2.1",
    ],
    extras_require={"test": ["pytest>=7"]},
)
