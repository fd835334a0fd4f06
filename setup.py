from setuptools import setup

setup(
    name="fsaudit",
    version="0.1.0",
    py_modules=["fsaudit"],
    python_requires=">=3.8",
    install_requires=[
        "httpx",
        "requests",
        "firebase-admin",
        "google-auth",
        "pydantic>=2",
        "loguru",
        "rich",
        "python-dotenv",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "fsaudit = fsaudit:main",
        ],
    },
)
