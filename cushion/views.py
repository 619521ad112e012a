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
Chainable view, temporary view and ``_all_docs`` queries.

A builder only collects parameters; nothing is sent until you call one of its
``query*()`` methods.  Every setter returns a new builder and leaves the one
you called it on alone, so a builder can be kept around and branched:

>>> from cushion import Database
>>> names = Database('people').view('person', 'names')
>>> first10 = names.limit(10)
>>> last10 = first10.descending()
>>> names.params
{}
>>> first10.params
{'limit': '10'}
>>> last10.params
{'limit': '10', 'descending': 'true'}

Parameter values are kept exactly as they go on the wire.  Keys are JSON
encoded with the builder's `cushion.codec.Codec`, so compound keys work as
you would expect:

>>> names.key(('Bob', 30)).params
{'key': '["Bob",30]'}

"""

import copy

from . import DecodeError, dumps
from .codec import default_codec
from .model import (
    allow_missing,
    decode_reduced_result,
    decode_view_result,
    docs_row_decoder,
    reduced_row_decoder,
    row_decoder,
)
from . import strategy


def _bool(value):
    if not isinstance(value, bool):
        raise TypeError('must be a bool; got {!r}'.format(value))
    return dumps(value)


def _count(name, value):
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError('{} must be an int; got {!r}'.format(name, value))
    if value < 0:
        raise ValueError('{} must be >= 0; got {}'.format(name, value))
    return str(value)


def _str(name, value):
    if not isinstance(value, str):
        raise TypeError('{} must be a str; got {!r}'.format(name, value))
    return value


class QueryBuilder:
    """
    Parameters shared by views and ``_all_docs``.

    Sub-classes set ``parts``, the path of the query below the database.
    """

    def __init__(self, db, params=None, codec=None):
        self.db = db
        self.codec = (default_codec if codec is None else codec)
        self._params = ({} if params is None else dict(params))

    @property
    def params(self):
        return dict(self._params)

    @property
    def path(self):
        return self.db.basepath + '/'.join(self.parts)

    def _ident(self):
        return (self.parts, self.codec)

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return (self.db is other.db and self._ident() == other._ident()
            and self._params == other._params)

    def __ne__(self, other):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __hash__(self):
        return hash((self._ident(), tuple(sorted(self._params.items()))))

    def __repr__(self):
        return '{}({!r}, {!r})'.format(
            self.__class__.__name__, self.path, self._params
        )

    def _set(self, name, value):
        new = copy.copy(self)
        new._params = dict(self._params)
        new._params[name] = value
        return new

    def _key(self, key):
        return self.codec.dumps(key)

    def conflicts(self, conflicts=True):
        return self._set('conflicts', _bool(conflicts))

    def descending(self, descending=True):
        return self._set('descending', _bool(descending))

    def inclusive_end(self, inclusive_end=True):
        return self._set('inclusive_end', _bool(inclusive_end))

    def update_seq(self, update_seq=True):
        return self._set('update_seq', _bool(update_seq))

    def attachments(self, attachments=True):
        return self._set('attachments', _bool(attachments))

    def att_encoding_info(self, att_encoding_info=True):
        return self._set('att_encoding_info', _bool(att_encoding_info))

    def limit(self, limit):
        return self._set('limit', _count('limit', limit))

    def skip(self, skip):
        return self._set('skip', _count('skip', skip))

    def key(self, key):
        return self._set('key', self._key(key))

    def start_key(self, start_key):
        return self._set('startkey', self._key(start_key))

    def end_key(self, end_key):
        return self._set('endkey', self._key(end_key))

    def start_key_doc_id(self, start_key_doc_id):
        return self._set('startkey_docid',
            _str('start_key_doc_id', start_key_doc_id)
        )

    def end_key_doc_id(self, end_key_doc_id):
        return self._set('endkey_docid',
            _str('end_key_doc_id', end_key_doc_id)
        )

    def _include_docs(self):
        return self._set('include_docs', 'true')

    def _execute(self, keys=None):
        if keys is not None:
            keys = list(keys)
        return strategy.query(self.db, self.parts, self._params, keys,
            self.codec
        )


class MapReduceQueryBuilder(QueryBuilder):
    """
    Grouping, reduce and the three query modes of a map/reduce view.

    *key_type* and *value_type* say how to decode each row's key and value
    (see `cushion.codec.Codec.decode()`).
    """

    def __init__(self, db, params=None, key_type=None, value_type=None,
                 codec=None):
        super().__init__(db, params, codec)
        self.key_type = key_type
        self.value_type = value_type

    def _ident(self):
        return super()._ident() + (self.key_type, self.value_type)

    def group(self, group=True):
        return self._set('group', _bool(group))

    def group_level(self, group_level):
        return self._set('group_level', _count('group_level', group_level))

    def stale(self, stale):
        return self._set('stale', _str('stale', stale))

    def _reduce(self, reduce=True):
        return self._set('reduce', _bool(reduce))

    def query(self, keys=None):
        """
        Return the map rows, optionally just those for *keys*, in key order.
        """
        obj = self._reduce(False)._execute(keys)
        return decode_view_result(obj,
            row_decoder(self.key_type, self.value_type, self.codec)
        )

    def query_with_reduce(self, keys=None, key_type=None, value_type=None):
        """
        Return reduced rows.

        Without *keys* you get whatever grouping you asked for (by default,
        a single row for the whole view).  With *keys* the query is always
        grouped, so you get one reduced row per key.
        """
        builder = self._reduce()
        if keys is not None:
            builder = builder.group()
        obj = builder._execute(keys)
        return decode_reduced_result(obj, reduced_row_decoder(
            (self.key_type if key_type is None else key_type),
            value_type,
            self.codec,
        ))

    def query_include_docs(self, doc_type=None, keys=None):
        """
        Return map rows, each with its document decoded as *doc_type*.
        """
        obj = self._reduce(False)._include_docs()._execute(keys)
        return decode_view_result(obj, docs_row_decoder(
            doc_type, self.key_type, self.value_type, self.codec
        ))


class ViewQueryBuilder(MapReduceQueryBuilder):
    """
    A query against ``/db/_design/<design>/_view/<view>``.
    """

    def __init__(self, db, design, view, params=None, key_type=None,
                 value_type=None, codec=None):
        super().__init__(db, params, key_type, value_type, codec)
        self.design = design
        self.view = view
        self.parts = ('_design', design, '_view', view)


class TemporaryViewQueryBuilder(MapReduceQueryBuilder):
    """
    An ad hoc view, POSTed with its functions to ``/db/_temp_view``.

    Nothing is stored in the database: *map_src* (and *reduce_src*, if any)
    are sent with every query, along with the keys when there are some.

    >>> from cushion import Database
    >>> names = Database('people').temporary_view(
    ...     'function(doc) { emit(doc.name, doc.age); }', '_sum'
    ... )
    >>> names.path
    '/people/_temp_view'
    >>> names.limit(1).params
    {'limit': '1'}

    """

    parts = ('_temp_view',)

    def __init__(self, db, map_src, reduce_src=None, params=None,
                 key_type=None, value_type=None, codec=None):
        super().__init__(db, params, key_type, value_type, codec)
        self.map_src = _str('map_src', map_src)
        self.reduce_src = (None if reduce_src is None
            else _str('reduce_src', reduce_src))

    def _ident(self):
        return super()._ident() + (self.map_src, self.reduce_src)

    def _functions(self):
        functions = {'map': self.map_src}
        if self.reduce_src is not None:
            functions['reduce'] = self.reduce_src
        return functions

    def _execute(self, keys=None):
        if keys is not None:
            keys = list(keys)
        return strategy.query_temporary(self.db, self.parts,
            self._functions(), self._params, keys, self.codec
        )


class AllDocsQueryBuilder(QueryBuilder):
    """
    A query against ``/db/_all_docs``, keyed by document ID.
    """

    parts = ('_all_docs',)

    def query(self, keys=None):
        obj = self._execute(keys)
        return decode_view_result(obj, row_decoder(codec=self.codec))

    def query_include_docs(self, doc_type=None, keys=None):
        obj = self._include_docs()._execute(keys)
        return decode_view_result(obj,
            docs_row_decoder(doc_type, codec=self.codec)
        )

    def query_allow_missing(self, keys):
        """
        Like `query()` with *keys*, but IDs that don't exist become `Missing`.
        """
        return self._query_allow_missing(keys, row_decoder(codec=self.codec))

    def query_include_docs_allow_missing(self, keys, doc_type=None):
        return self._query_allow_missing(keys,
            docs_row_decoder(doc_type, codec=self.codec),
            self._include_docs(),
        )

    def _query_allow_missing(self, keys, decode_row, builder=None):
        keys = list(keys)
        obj = (self if builder is None else builder)._execute(keys)
        result = decode_view_result(obj,
            allow_missing(decode_row, codec=self.codec)
        )
        if len(result.rows) != len(keys):
            raise DecodeError(
                'asked for {} keys, got {} rows'.format(
                    len(keys), len(result.rows)
                )
            )
        return result
