"""Setup configuration for marginscan"""

from setuptools import setup, find_packages

setup(
    name="margin-opportunity-scanner",
    version="0.1.0",
    description=(
        "Batch scanner that quantifies margin opportunity in closed deals by "
        "comparing each deal with its peer-cohort median margin."
    ),
    author="Margin Opportunity Scanner Contributors",
    author_email="",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "requests>=2.28.0",
        "pydantic>=2.5",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "black>=22.0",
            "flake8>=4.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "margin-scan=marginscan.main:main",
        ],
    },
)
