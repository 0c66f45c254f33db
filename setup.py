from setuptools import setup, find_packages

setup(
    name='gsconnect-mount-manager',
    version='0.1.0',
    description='Stable folders and bookmarks for phones mounted by GSConnect',
    packages=find_packages(where='src'),
    package_dir={'': 'src'},
    python_requires='>=3.10',
    install_requires=[
        'psutil',
        'redis',
        'termcolor',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'gmm=gmm.main:main',
        ],
    },
)
