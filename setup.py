from setuptools import setup, find_packages

setup(
    name="bandscope",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "numpy>=1.17.0",
        "scipy>=1.4.0",
        "pyfftw>=0.12.0",
        "psutil>=5.6.0",
        "Pillow>=8.0.0",
    ],
    extras_require={
        "dev": ["pytest", "pytest-cov", "black", "flake8"],
    },
    python_requires=">=3.8",
    description="Frequency and sub-band inspection of images with cached transform pipelines",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Topic :: Scientific/Engineering :: Image Processing",
    ],
)
