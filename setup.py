from setuptools import find_packages, setup

setup(
    name="static-deploy",
    version="0.1.0",
    packages=find_packages(
        include=[
            "deploy_common",
            "deploy_common.*",
            "deploy_persistence",
            "deploy_persistence.*",
            "deploy_worker",
            "deploy_worker.*",
            "deploy_intake",
            "deploy_intake.*",
            "deploy_client",
            "deploy_client.*",
            "deploy_admin",
            "deploy_admin.*",
        ]
    ),
    install_requires=[
        "requests>=2.31.0",
        "fastapi>=0.104.0",
        "uvicorn>=0.24.0",
        "pydantic>=2.0",
        "aiosqlite>=0.19.0",
        "click>=8.1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.24.0",
            "httpx>=0.25.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "deploy=deploy_client.cli:main",
            "deploy-worker=deploy_worker.__main__:main",
            "deploy-intake=deploy_intake.app:main",
            "deploy-admin=deploy_admin.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
