"""
Setup script for the RiskMate backend
"""
from setuptools import setup, find_packages

setup(
    name="riskmate",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.10,<3.14",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn[standard]>=0.27",
        "sqlalchemy>=2.0",
        "psycopg2-binary>=2.9",
        "pydantic>=2.5",
        "python-dotenv>=1.0",
        "stripe>=8.0",
        "reportlab>=4.0",
        "Pillow>=10.0",
        "apscheduler>=3.10,<4",
        "redis>=5.0",
        "python-jose[cryptography]>=3.3",
        "httpx>=0.26",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "httpx>=0.26",
        ],
    },
    entry_points={
        "console_scripts": [
            "riskmate=riskmate.main:main",
        ],
    },
)
