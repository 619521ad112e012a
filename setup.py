#!/usr/bin/env python3
#
# cushion: revisions and views for a lightweight Couch
# Copyright (C) 2011-2016 Novacut Inc
#
# This file is part of `cushion`.
#
# `cushion` is free software: you can redistribute it and/or modify it under
# the terms of the GNU Lesser General Public License as published by the Free
# Software Foundation, either version 3 of the License, or (at your option) any
# later version.
#
# `cushion` is distributed in the hope that it will be useful, but WITHOUT
# ANY WARRANTY; without even the implied warranty of MERCHANTABILITY or FITNESS
# FOR A PARTICULAR PURPOSE.  See the GNU Lesser General Public License for more
# details.
#
# You should have received a copy of the GNU Lesser General Public License along
# with `cushion`.  If not, see <http://www.gnu.org/licenses/>.
#
# Authors:
#   Jason Gerard DeRose <jderose@novacut.com>
#

"""
Install `cushion`.
"""

import sys
if sys.version_info < (3, 4):
    sys.exit('Cushion requires Python 3.4 or newer')

from setuptools import setup, Command
import re
from os import path


tree = path.dirname(path.abspath(__file__))


def read_version():
    filename = path.join(tree, 'cushion', '__init__.py')
    with open(filename, 'r') as fp:
        match = re.search(r"^__version__ = '([^']+)'$", fp.read(), re.M)
    return match.group(1)


class Test(Command):
    description = 'run unit tests and doc tests'

    user_options = [
        ('skip-all', None, 'skip all tests'),
    ]

    def initialize_options(self):
        self.skip_all = 0

    def finalize_options(self):
        pass

    def run(self):
        if self.skip_all:
            sys.exit(0)
        from cushion.tests.run import run_tests
        if not run_tests():
            raise SystemExit('2')


setup(
    name='cushion',
    description='revisions and views for a lightweight Couch',
    version=read_version(),
    author='Jason Gerard DeRose',
    author_email='jderose@novacut.com',
    license='LGPLv3+',
    packages=['cushion', 'cushion.tests'],
    install_requires=['dbase32', 'degu<0.13'],
    cmdclass={'test': Test},
)
