"""Setup configuration for the Nazuna bot core."""

from setuptools import setup, find_packages

setup(
    name="nazuna",
    version="0.1.0",
    description="Session lifecycle manager and group moderation engine for a chat bot",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "PyYAML>=6.0",
        "python-dotenv>=1.0",
        "prompt_toolkit>=3.0",
        "requests>=2.31",
        "Pillow>=10.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "nazuna=nazuna.main:main",
        ],
    },
)
