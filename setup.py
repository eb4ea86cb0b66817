from setuptools import setup, find_packages

setup(
    name="vdtier",
    version="1.0.0",
    package_dir={"": "modules"},
    packages=find_packages(where="modules", exclude=["*.tests", "*.tests.*"]),
    description="Tiered duplicate and visually similar video detection.",
    author="Your Name",
    author_email="carlsonamax@gmail.com",
    url="https://github.com/MaxCarlson/vdtier",
    python_requires=">=3.10",
    install_requires=[
        "rich",
        "Pillow",
        "imagehash",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "video-tiers=vdtier.video_tiers:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
