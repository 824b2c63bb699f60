from setuptools import setup, find_packages

setup(
    name="opencodepy",
    version="0.1.0",
    description="Synchronous Python client and process supervisor for opencode servers",
    author="phisanti",
    author_email="tisalon@outlook.com",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*", "scripts"]),
    install_requires=[
        "httpx>=0.27.0",
        "python-dotenv>=1.0.0",
        "typer>=0.12.0",
        "rich>=13.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "opencodepy=opencodepy.main:opencodepy",
        ],
    },
    python_requires=">=3.10",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
)
