from setuptools import setup, find_packages

setup(
    name="masjid-display-sync",
    version="1.0.0",
    description="Resource sync service for MasjidConnect display screens",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.8",
    install_requires=[
        "PyYAML>=6.0",
        "pyzmq>=25.0",
        "requests>=2.31.0",
        "APScheduler>=3.9,<4",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "black>=23.0.0",
            "pylint>=2.17.0",
        ],
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "masjid-display-sync=masjid_display.service:main",
        ],
    },
)
