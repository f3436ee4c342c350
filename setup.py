#!/usr/bin/python3
# -*- coding: utf-8 -*-
##
##  This file is part of etcNodeCache, a locally-cached view of a single
##  node that you tend to store in etcd.
##
##  etcNodeCache is Copyright © 2015 by Matthias Urlichs <matthias@urlichs.de>,
##  it is licensed under the GPLv3. See the file `README.rst` for details,
##  including optimistic statements by the author.
##
##  This program is free software: you can redistribute it and/or modify
##  it under the terms of the GNU General Public License as published by
##  the Free Software Foundation, either version 3 of the License, or
##  (at your option) any later version.
##
##  This program is distributed in the hope that it will be useful,
##  but WITHOUT ANY WARRANTY; without even the implied warranty of
##  MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
##  GNU General Public License (included; see the file LICENSE)
##  for more details.
##
##  This header is auto-generated and may self-destruct at any time,
##  courtesy of "make update". The original is in ‘scripts/_boilerplate.py’.
##  Thus, do not remove the next line, or insert any blank lines above.
##
import logging
logger = logging.getLogger(__name__)
##BP

#
# setup.py for etcNodeCache

import sys

from setuptools import setup

def get_version(fname='etcd_nodecache/__init__.py'):
    with open(fname) as f:
        for line in f:
            if line.startswith('__VERSION__'):
                return eval(line.split('=')[-1])

name='etcd_nodecache'

if sys.version_info < (3,7):
    sys.exit('Error: Python 3.7 or newer is required. Current version:\n %s'
             % sys.version)

setup(
    name = name,
    version = '.'.join(str(x) for x in get_version()),
    description = 'Locally cached etcd node',
    long_description = '''\
etcNodeCache keeps a local copy of a single etcd node current,
by watching it and re-reading it whenever it changes.
''',
    classifiers=[
        "Topic :: System :: Distributed Computing",
        "Topic :: Software Development :: Libraries",
        "License :: OSI Approved :: GNU General Public License v3 (GPLv3)",
        "Programming Language :: Python :: 3",
        "Topic :: Database :: Front-Ends",
    ],
    keywords='etcd asyncio cache',
    author = 'Matthias Urlichs',
    author_email = 'matthias@urlichs.de',
    url = 'https://github.com/m-o-a-t/etcd-tree',
    license = 'GPL',

    zip_safe = False,
    packages = ('etcd_nodecache',),
    python_requires = '>=3.7',
    install_requires = """\
aio_etcd >= 0.4.3
python-etcd
PyYAML
""",
    extras_require = {
        'test': """\
coverage
pytest
pytest-asyncio
pytest-cov
""",
    },
    )
