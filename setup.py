#!/usr/bin/env python
# -*- coding: utf-8 -*-

from setuptools import setup

NAME = 'pomp'
DESCRIPTION = ('Composable partially observed Markov process models, '
               'particle filters and PMMH in Python')

with open('README.md') as f:
    long_description = f.read()

METADATA = dict(
    name=NAME,
    version='0.1',
    license='MIT',
    install_requires=['numpy>=1.18',
                      'scipy>=1.7',
                      'numba',
                      'joblib'
                      ],
    extras_require={'test': ['pytest']},
    description=DESCRIPTION,
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=[NAME],
    include_package_data=True,
    platforms='any',
    classifiers=[
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Development Status :: 3 - Alpha',
        'Natural Language :: English',
        'Environment :: Console',
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Topic :: Scientific/Engineering :: Mathematics',
    ]
)

setup(**METADATA)
