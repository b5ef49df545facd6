from setuptools import setup, find_packages

setup(
    name="biometric_capture",
    version="0.1.0",
    description="Camera-based heart rate and HRV measurement engine",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["main"],
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.24",
        "scipy>=1.10",
        "opencv-python>=4.8",
    ],
    extras_require={
        "dev": ["pytest>=7.4"],
    },
    entry_points={
        "console_scripts": [
            "biometric-capture=main:main",
        ]
    },
)
