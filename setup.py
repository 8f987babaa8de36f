from setuptools import setup, find_packages

setup(
    name="canvas-sync",
    version="1.0.0",
    packages=find_packages(include=["canvas_sync", "canvas_sync.*"]),
    python_requires=">=3.11",
    install_requires=[
        "httpx>=0.27",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "redis>=5.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.24",
        ],
    },
)
