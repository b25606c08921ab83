from setuptools import find_packages, setup


APP_NAME = "brepbridge"
APP_VERSION = "0.4.0"
APP_DESCRIPTION = "Ownership, N-ary boolean dispatch and mesh caching for native B-rep geometry kernels"
APP_AUTHOR = "Gecesars"

INSTALL_REQUIRES = [
    "numpy>=1.24",
]

EXTRAS_REQUIRE = {
    "viz": ["pyvista>=0.42"],
    "test": ["pytest>=7.4"],
}


setup(
    name=APP_NAME,
    version=APP_VERSION,
    description=APP_DESCRIPTION,
    author=APP_AUTHOR,
    python_requires=">=3.9",
    packages=find_packages(include=["brepbridge", "brepbridge.*"]),
    install_requires=INSTALL_REQUIRES,
    extras_require=EXTRAS_REQUIRE,
)
