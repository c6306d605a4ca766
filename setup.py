"""Setup script for offline-whisper."""

from setuptools import setup, find_packages
import os

# Read version from __init__.py
version = {}
with open(os.path.join("offline_whisper", "__init__.py")) as f:
    for line in f:
        if line.startswith("__version__"):
            exec(line, version)
            break

# Read README for long description
with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

test_requires = [
    "pytest>=7.4.0",
    "pytest-cov>=4.1.0",
    "hypothesis>=6.82.0",
    "onnx>=1.14.0",
]

setup(
    name="offline-whisper",
    version=version.get("__version__", "0.1.0"),
    author="Your Name",
    author_email="your.email@example.com",
    description="Offline speech-to-text engine for Whisper ONNX models",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/offline-whisper",
    packages=find_packages(include=["offline_whisper", "offline_whisper.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: Multimedia :: Sound/Audio :: Speech",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
    ],
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.24.0",
        "torch>=2.0.0",
        "onnxruntime>=1.16.0",
        "tokenizers>=0.15.0",
        "httpx>=0.25.0",
        "soundfile>=0.12.0",
        "sounddevice>=0.4.6",
    ],
    extras_require={
        "dev": test_requires,
        "test": test_requires,
    },
)
