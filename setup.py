"""Setup script for the Order Reconciler."""

from setuptools import setup, find_packages

setup(
    name="order-reconciler",
    version="0.1.0",
    description="Payment-order reconciliation core for Stripe and PayPal",
    author="ML Roadmap Bootcamp",
    python_requires=">=3.10",
    packages=find_packages(include=["order_reconciler", "order_reconciler.*"]),
    install_requires=[
        line.strip()
        for line in open("requirements.txt")
        if line.strip() and not line.startswith("#")
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "aiosqlite>=0.19.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "order-reconciler=order_reconciler.api.main:main",
        ]
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Framework :: FastAPI",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
