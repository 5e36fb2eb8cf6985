from setuptools import setup, find_packages

setup(
    name='so-arm-bus',
    version='0.1.0',
    description='Feetech STS3215 servo bus controller for the SO-ARM101',
    packages=find_packages(exclude=['tests', 'tests.*']),
    install_requires=[
        'pyserial==3.5',
        'click',
        'rich',
        'tabulate',
        'tqdm',
        'python-dotenv',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'so-arm=so_arm_bus.cli:cli',
        ],
    },
    include_package_data=True,
    python_requires='>=3.9',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
    ],
)
