"""Package the loop_builder engine and its HTTP backend dependencies."""
from setuptools import setup

setup(
    name="looprunner",
    version="0.1.0",
    description="Circular running route generation and validation engine",
    packages=["loop_builder"],
    python_requires=">=3.9",
    install_requires=[
        "requests",
        "numpy",
        "polyline",
        "geopy",
        "python-dotenv",
        "SQLAlchemy>=2.0",
        "fastapi",
        "uvicorn",
        "pydantic",
    ],
    extras_require={"test": ["pytest", "httpx"]},
    entry_points={"console_scripts": ["looprunner=loop_builder.__main__:main"]},
)
