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
Translate between Python values and the JSON CouchDB speaks.

Documents, view keys and view values all cross the wire as JSON.  On the way
out a `Codec` turns tuples into arrays and namedtuples into objects; on the
way back it can rebuild those types when you tell it what *kind* you expect:

>>> from collections import namedtuple
>>> Person = namedtuple('Person', 'name age')
>>> codec = Codec()
>>> codec.encode(('Bob', 30))
['Bob', 30]
>>> codec.decode(['Bob', 30], tuple)
('Bob', 30)
>>> codec.decode({'name': 'Bob', 'age': 30}, Person)
Person(name='Bob', age=30)

"""

from . import dumps, DecodeError


# Kinds that are checked rather than constructed:
JSON_KINDS = (str, int, float, bool, list, dict)


class Codec:
    __slots__ = ()

    def encode(self, value):
        """
        Return *value* as something ``json.dumps()`` can handle.
        """
        if hasattr(value, '_asdict'):
            return dict(
                (k, self.encode(v)) for (k, v) in value._asdict().items()
            )
        if isinstance(value, (tuple, list)):
            return [self.encode(v) for v in value]
        if isinstance(value, dict):
            return dict((k, self.encode(v)) for (k, v) in value.items())
        return value

    def dumps(self, value):
        """
        Encode *value* to a JSON ``str``, eg for a ``key`` query parameter.

        >>> Codec().dumps(('Bob', 30))
        '["Bob",30]'

        """
        return dumps(self.encode(value))

    def decode(self, value, kind=None):
        """
        Interpret the JSON *value* as *kind*.

        When *kind* is ``None`` the value is returned unchanged.  The plain
        JSON types are type-checked.  ``tuple`` turns an array into a tuple.
        Anything else is called, with ``**value`` for an object, ``*value``
        for an array, or the value itself otherwise.

        Raises `DecodeError` when *value* doesn't fit *kind*.
        """
        if kind is None or value is None:
            return value
        if kind in JSON_KINDS:
            return self._check(value, kind)
        if kind is tuple:
            return tuple(self._check(value, list))
        try:
            if isinstance(value, dict):
                return kind(**value)
            if isinstance(value, list):
                return kind(*value)
            return kind(value)
        except (TypeError, ValueError) as e:
            raise DecodeError(
                'cannot decode {!r} as {!r}: {}'.format(value, kind, e)
            ) from e

    def _check(self, value, kind):
        if kind is float and isinstance(value, int) and value is not True \
                and value is not False:
            return float(value)
        if kind is int and isinstance(value, bool):
            ok = False
        else:
            ok = isinstance(value, kind)
        if not ok:
            raise DecodeError(
                'expected {}, got {!r}'.format(kind.__name__, value)
            )
        return value


default_codec = Codec()
