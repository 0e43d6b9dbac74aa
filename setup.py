from setuptools import setup, find_packages

setup(
    name="stream-rotator",
    version="0.1.0",
    description="Copy stdin or a named pipe into size/time rotated files",
    
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    
    install_requires=[
        "pydantic>=2.0.0",
        "click>=8.1.0",
        "pyyaml>=6.0",
        "structlog>=23.1.0",
        "prometheus-client>=0.16.0",
    ],
    
    extras_require={
        "dev": [
            "pytest>=7.3.0",
            "pytest-cov>=4.0.0",
            "black>=23.3.0",
            "mypy>=1.3.0",
            "ruff>=0.0.270",
        ],
        "test": [
            "pytest>=7.3.0",
        ],
    },
    
    entry_points={
        "console_scripts": [
            "stream-rotator=rotator.cli.main:cli",
        ],
    },
    
    python_requires=">=3.11",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: System Administrators",
        "Operating System :: POSIX",
        "Programming Language :: Python :: 3.11",
    ],
)
