import setuptools

with open("requirements.txt", "r") as f:
    install_requires = f.read().split()

setuptools.setup(
    name="netconform",
    version="0.1.0",
    install_requires=install_requires,
    description="State convergence watchers for network device conformance tests",
    python_requires=">=3.9",
    entry_points={
        "console_scripts": [
            "netconform-flows = netconform.ate.main:main",
        ],
    },
    package_dir={"": "src"},
    packages=setuptools.find_namespace_packages(where="src", include=["netconform.*"]),
    zip_safe=False,
)
