from setuptools import setup, find_packages

setup(
    name='butleradm',
    version='0.1.0',
    packages=find_packages(exclude=['*.tests']),
    include_package_data=True,
    package_data={
        'butleradm.modules.bootstrap': [
            'manifests/crds/*.yaml',
            'manifests/controllers/*.yaml',
        ],
    },
    install_requires=[
        'typer[all]',
        'kubernetes',
        'urllib3',
        'PyYAML',
        'pydantic>=2',
        'jsonschema',
        'python-dotenv',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'butleradm=butleradm.cli:app'
        ]
    },
    author='Butler Labs',
    description='Bootstrap Butler management clusters on Harvester, Nutanix and Proxmox from a temporary KIND cluster',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.8',
)
