# !/usr/bin/python
#
# Copyright 2023 Google LLC
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
# ==============================================================================
"""Install script for wsi-metadata."""

import setuptools

setuptools.setup(
    name='wsi_metadata',
    version='0.1.0',
    author='Google LLC.',
    author_email='no-reply@google.com',
    license='Apache 2.0',
    description=(
        'A library that indexes whole slide imaging DICOM metadata and groups'
        ' series into slides and acquisitions.'
    ),
    install_requires=[
        'absl-py',
        'cachetools',
        'dataclasses-json',
        'google-auth',
        'pydicom',
        'requests',
        'tenacity',
    ],
    extras_require={
        'test': ['pytest', 'requests_mock'],
    },
    package_dir={
        'wsi_metadata': 'wsi_metadata',
        'wsi_metadata.test_utils': 'wsi_metadata/test_utils',
    },
    package_data={
        'wsi_metadata': ['testdata/*.json'],
    },
    packages=setuptools.find_packages(
        include=[
            'wsi_metadata',
            'wsi_metadata.test_utils',
        ]
    ),
    python_requires='>=3.10',
)
