# Copyright 2016-2024, Pulumi Corporation.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""The Crucible infrastructure reconciliation engine."""

from setuptools import find_packages, setup

VERSION = "0.1.0"


def readme():
    try:
        with open('README.md', encoding='utf-8') as f:
            return f.read()
    except FileNotFoundError:
        return "Crucible's reconciliation engine - Development Version"


setup(name='crucible',
      version=VERSION,
      description='Crucible\'s resource reconciliation engine',
      long_description=readme(),
      long_description_content_type='text/markdown',
      license='Apache 2.0',
      packages=find_packages(exclude=("tests*",)),
      package_data={
          'crucible': [
              'py.typed'
          ]
      },
      python_requires='>=3.8',
      install_requires=[
          'cryptography>=41.0',
          'semver>=2.13',
          'pyyaml>=6.0'
      ],
      extras_require={
          'test': [
              'pytest>=7.0',
              'pytest-asyncio>=0.21',
              'pytest-timeout>=2.1',
          ]
      },
      zip_safe=False)
