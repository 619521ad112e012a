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
How a built query goes over the wire.

A query with an explicit list of keys is a POST with ``{"keys": [...]}`` as
the body, as the list can be far longer than a URL is allowed to be.  Every
other query is a GET with the parameters in the query string, except for
temporary views, whose map and reduce functions always go in a POST body.
"""

import logging

from .codec import default_codec


log = logging.getLogger()

KEYS_FIELD = 'keys'
QUERY_STATUS = 200


def get_query(db, parts, params, expect=QUERY_STATUS):
    log.debug('GET %s %r', '/'.join(parts), params)
    return db.get(*parts, expect=expect, **params)


def post_query(db, parts, body, params, expect=QUERY_STATUS):
    log.debug('POST %s %r', '/'.join(parts), params)
    return db.post(body, *parts, expect=expect, **params)


def query_by_keys(db, parts, keys, params, codec=default_codec,
                  expect=QUERY_STATUS):
    body = {KEYS_FIELD: [codec.encode(key) for key in keys]}
    return post_query(db, parts, body, params, expect)


def query(db, parts, params, keys=None, codec=default_codec):
    """
    GET when *keys* is ``None``, otherwise POST the keys.
    """
    if keys is None:
        return get_query(db, parts, params)
    return query_by_keys(db, parts, keys, params, codec)


def query_temporary(db, parts, functions, params, keys=None,
                    codec=default_codec):
    """
    POST an ad hoc view's *functions*, with *keys* when there are some.
    """
    body = dict(functions)
    if keys is not None:
        body[KEYS_FIELD] = [codec.encode(key) for key in keys]
    return post_query(db, parts, body, params)
