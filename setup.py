from setuptools import find_namespace_packages, setup

package_name = "dronefleet"

setup(
    name=package_name,
    version="0.1.0",
    packages=find_namespace_packages(include=[package_name, f"{package_name}.*"], exclude=[f"{package_name}.tests*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.110",
        "pydantic>=2.5",
        "pymysql>=1.1",
        "uvicorn>=0.27",
    ],
    extras_require={
        "test": ["pytest>=7.4", "httpx>=0.27"],
    },
    zip_safe=True,
    maintainer="dronefleet",
    maintainer_email="demo@example.com",
    description="Drone delivery dispatch: order allocation, route planning and flight simulation",
    license="Apache-2.0",
    entry_points={
        "console_scripts": [
            "dronefleet = dronefleet.main:main",
        ],
    },
)
