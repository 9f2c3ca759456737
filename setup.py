from setuptools import setup, find_packages

setup(
    name="nrepl-eval",
    version="0.3.0",
    description="Command-line nREPL client with persistent sessions, timeouts and server discovery",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "typer>=0.12.0",
        "rich>=13.0.0",
        "python-dotenv>=1.0.0",
        "psutil>=6.0.0",
    ],
    extras_require={
        "test": ["pytest>=7.0.0"],
    },
    entry_points={
        "console_scripts": [
            "nrepl-eval=nrepleval.main:nrepl_eval",
        ],
    },
    python_requires=">=3.10",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
)
