# Copyright 2008-2018 Univa Corporation
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

from setuptools import find_packages, setup


VERSION = '1.0.0'


def get_requirements():
    with open('requirements.txt') as fp:
        requirements = [buf.rstrip() for buf in fp.readlines()
                        if buf.strip() and not buf.startswith('#')]

    return requirements


setup(
    name='chefcompute',
    version=VERSION,
    license='Apache 2.0',
    description='Provision compute nodes bootstrapped into a Chef group,'
                ' verify them, and clean up',
    packages=find_packages(where='src'),
    package_dir={'': 'src'},
    python_requires='>=3.9',
    zip_safe=False,
    install_requires=get_requirements(),
    extras_require={
        'test': [
            'pytest',
            'mock',
            'moto[ec2]>=5.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'destroy-group-nodes=chefcompute.scripts.destroy_group_nodes:main',
        ]
    }
)
