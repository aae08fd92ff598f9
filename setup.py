from setuptools import setup, find_packages

setup(
    name='proximity-correction',
    version='1.0.0',
    description='Electron-beam proximity effect correction with dose layering and polygon fracturing',
    packages=find_packages(exclude=['tests', 'tests.*']),
    install_requires=[
        'numpy',
        'scipy',
        'scikit-image',
        'tensorflow',
        'ezdxf',
        'matplotlib',
    ],
    extras_require={
        'test': ['pytest'],
    },
    python_requires='>=3.8',
    include_package_data=True,
    entry_points={
        'console_scripts': [
            'proximity-correct=proximity_correction.cli:main',
        ],
    },
)
