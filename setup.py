#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""The setup script."""

from setuptools import setup, find_packages

with open('README.rst') as readme_file:
    readme = readme_file.read()

with open('requirements.txt') as r:
    requirements = [line.strip() for line in r
                    if line.strip() and not line.startswith('#')]

test_requirements = ['pytest', 'munch']

setup(
    name='k3sboot',
    version='0.3.0',
    description='Boot a single node k3s cluster with a GitOps controller '
                'on one cloud machine',
    long_description=readme,
    long_description_content_type='text/x-rst',
    author='k3sboot developers',
    python_requires='>=3.8',
    packages=find_packages(include=['k3sboot', 'k3sboot.*']),
    package_data={'k3sboot': ['provision/userdata/*.sh']},
    include_package_data=True,
    install_requires=requirements,
    extras_require={'test': test_requirements},
    tests_require=test_requirements,
    entry_points={
        'console_scripts': ['k3sboot=k3sboot.k3sboot:main'],
    },
    license='Apache Software License 2.0',
    classifiers=[
        'Environment :: Console',
        'Intended Audience :: System Administrators',
        'Programming Language :: Python :: 3',
        'Topic :: System :: Clustering',
    ],
)
