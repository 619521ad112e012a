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
`cushion` - revisions and views for a lightweight Couch.

Cushion is a small CouchDB client built around the two parts of the CouchDB
API that actually have rules: the revision model that guards every document
mutation, and view queries with their key encoding, paging and reduce
semantics.

This module holds the plumbing: the HTTP transport (`CouchBase`), the
exceptions raised for each HTTP status, and the `Server` and `Database`
handles.  The interesting parts live in:

    * `cushion.documents` - single and bulk document CRUD
    * `cushion.views` - chainable view and ``_all_docs`` queries
    * `cushion.attachments` - stub vs inline attachments
    * `cushion.model` - documents, rows and paged results
"""

from io import BytesIO
import json
from base64 import b64encode
from urllib.parse import urlparse, urlencode, ParseResult
import ssl
import threading
import platform
from collections import namedtuple
import logging

from degu.client import Client, SSLClient, build_client_sslctx


__all__ = (
    'Server',
    'Database',

    'HTTPError',
    'BadRequest',
    'Unauthorized',
    'Forbidden',
    'NotFound',
    'MethodNotAllowed',
    'NotAcceptable',
    'Conflict',
    'PreconditionFailed',
    'BadContentType',
    'BadRangeRequest',
    'ExpectationFailed',
    'ServerError',
    'UnexpectedStatus',

    'CannotUpdate',
    'DecodeError',
)

__version__ = '26.10.0'
log = logging.getLogger()
USER_AGENT = 'Cushion/{} ({}; {})'.format(__version__,
    platform.system(), platform.machine()
)

HTTP_IPv4_URL = 'http://127.0.0.1:5984/'
DEFAULT_URL = HTTP_IPv4_URL

# Same shape as ``degu.client.Response``, used for errors we raise locally:
Response = namedtuple('Response', 'status reason headers body')


def create_client(url, **options):
    """
    Convenience function to create a `degu.client.Client` from a URL.

    For example:

    >>> create_client('http://www.example.com/')
    Client(('www.example.com', 80))

    """
    t = (url if isinstance(url, ParseResult) else urlparse(url))
    if t.scheme != 'http':
        raise ValueError("scheme must be 'http', got {!r}".format(t.scheme))
    port = (80 if t.port is None else t.port)
    return Client((t.hostname, port), **options)


def create_sslclient(sslctx, url, **options):
    """
    Convenience function to create an `SSLClient` from a URL.
    """
    t = (url if isinstance(url, ParseResult) else urlparse(url))
    if t.scheme != 'https':
        raise ValueError("scheme must be 'https', got {!r}".format(t.scheme))
    port = (443 if t.port is None else t.port)
    return SSLClient(sslctx, (t.hostname, port), **options)


class CannotUpdate(Exception):
    """
    Raised before any request is made when a mutation lacks an ID or revision.

    For bulk operations the whole batch is rejected, even if only one of the
    documents is incomplete.  The offending documents are in ``docs``.
    """

    error = 'cannot_update'

    def __init__(self, docs, reason):
        self.docs = docs
        self.reason = reason
        super().__init__('{}: {}'.format(self.error, reason))


class DecodeError(ValueError):
    """
    Raised when a response can't be interpreted as the expected shape.
    """


def parse_error_body(data):
    """
    Return the ``(error, reason)`` pair from a CouchDB error response body.

    For example:

    >>> parse_error_body(b'{"error":"not_found","reason":"missing"}')
    ('not_found', 'missing')
    >>> parse_error_body(b'')
    (None, None)

    """
    try:
        obj = json.loads(data.decode())
    except ValueError:
        return (None, None)
    if not isinstance(obj, dict):
        return (None, None)
    return (obj.get('error'), obj.get('reason'))


class HTTPError(Exception):
    """
    Base class for exceptions raised based on HTTP response status.
    """

    def __init__(self, response, method, url):
        self.response = response
        self.data = (b'' if response.body is None else response.body.read())
        self.method = method
        self.url = url
        (self.error, self.reason) = parse_error_body(self.data)
        super().__init__()

    @property
    def status(self):
        return self.response.status

    def __str__(self):
        return '{} {}: {} {}'.format(
            self.response.status, self.response.reason, self.method, self.url
        )


class ClientError(HTTPError):
    """
    Base class for all 4xx Client Error exceptions.
    """


class BadRequest(ClientError):
    '400 Bad Request'

class Unauthorized(ClientError):
    '401 Unauthorized'

class Forbidden(ClientError):
    '403 Forbidden'

class NotFound(ClientError):
    '404 Not Found'

class MethodNotAllowed(ClientError):
    '405 Method Not Allowed'

class NotAcceptable(ClientError):
    '406 Not Acceptable'

class Conflict(ClientError):
    '409 Conflict'

class Gone(ClientError):
    '410 Gone'

class LengthRequired(ClientError):
    '411 Length Required'

class PreconditionFailed(ClientError):
    '412 Precondition Failed'

class BadContentType(ClientError):
    '415 Unsupported Media Type'

class BadRangeRequest(ClientError):
    '416 Requested Range Not Satisfiable'

class ExpectationFailed(ClientError):
    '417 Expectation Failed'


class ServerError(HTTPError):
    """
    Used to raise exceptions for any 5xx Server Errors.
    """


class UnexpectedStatus(HTTPError):
    """
    A non-error status that isn't the status the caller expected.
    """


errors = {
    400: BadRequest,
    401: Unauthorized,
    403: Forbidden,
    404: NotFound,
    405: MethodNotAllowed,
    406: NotAcceptable,
    409: Conflict,
    410: Gone,
    411: LengthRequired,
    412: PreconditionFailed,
    415: BadContentType,
    416: BadRangeRequest,
    417: ExpectationFailed,
}


def not_found(method, url, reason='missing'):
    """
    Build a `NotFound` for a request we refused to make.
    """
    body = BytesIO(dumps({'error': 'not_found', 'reason': reason}).encode())
    response = Response(404, 'Object Not Found', {}, body)
    return NotFound(response, method, url)


def dumps(obj, pretty=False):
    """
    Safe and opinionated use of ``json.dumps()``.

    This function always calls ``json.dumps()`` with *ensure_ascii=False* and
    *sort_keys=True*.

    For example:

    >>> doc = {
    ...     'hello': 'мир',
    ...     'welcome': 'все',
    ... }
    >>> dumps(doc)
    '{"hello":"мир","welcome":"все"}'

    By default compact encoding is used, but if you supply *pretty=True*,
    4-space indentation will be used:

    >>> print(dumps(doc, pretty=True))
    {
        "hello": "мир",
        "welcome": "все"
    }

    """
    if pretty:
        return json.dumps(obj,
            ensure_ascii=False,
            sort_keys=True,
            separators=(',',': '),
            indent=4,
        )
    return json.dumps(obj,
        ensure_ascii=False,
        sort_keys=True,
        separators=(',',':'),
    )


def _json_body(obj):
    if obj is None:
        return None
    if isinstance(obj, bytes):
        return obj
    return dumps(obj).encode()


def _queryiter(options):
    """
    Return appropriately encoded (key, value) pairs sorted by key.

    Values that are already ``str`` are passed through untouched; anything
    else is JSON encoded, so ``True`` becomes ``'true'`` and ``17`` becomes
    ``'17'``.  This includes "key", "startkey" and "endkey": a ``str`` given
    for one of those must already be JSON, eg ``key='"foo"'``.  The query
    builders in `cushion.views` take care of this for you.
    """
    for key in sorted(options):
        value = options[key]
        if not isinstance(value, str):
            value = json.dumps(value, sort_keys=True, separators=(',',':'))
        yield (key, value)


def basic_auth_header(basic):
    b = '{username}:{password}'.format(**basic).encode()
    return 'Basic ' + b64encode(b).decode()


def _basic_auth_header(basic):
    return {'authorization': basic_auth_header(basic)}


def build_ssl_context(config):
    if 'context' in config:
        ctx = config['context']
        assert isinstance(ctx, ssl.SSLContext)
        assert ctx.verify_mode == ssl.CERT_REQUIRED
        return ctx
    return build_client_sslctx(config)


class Context:
    """
    Reuse TCP connections between multiple `CouchBase` instances.

    Individual `Server` and `Database` instances automatically do this: each
    thread gets its own thread-local connection that will transparently be
    reused.  This is also what makes a single `Database` safe to share among
    threads: no connection is ever used by two threads at once.

    To reuse connections among multiple `CouchBase` instances you need to create
    them with the same `Context` instance, like this:

    >>> ctx = Context('http://127.0.0.1:5984/')
    >>> foo = Database('foo', ctx=ctx)
    >>> bar = Database('bar', ctx=ctx)
    >>> foo.ctx is bar.ctx
    True

    """

    __slots__ = ('env', 'basepath', 't', 'url', 'threadlocal', 'client')

    def __init__(self, env=None):
        if env is None:
            env = DEFAULT_URL
        if not isinstance(env, (dict, str)):
            raise TypeError(
                'env must be a `dict` or `str`; got {!r}'.format(env)
            )
        self.env = ({'url': env} if isinstance(env, str) else env)
        url = self.env.get('url', DEFAULT_URL)
        t = urlparse(url)
        if t.scheme not in ('http', 'https'):
            raise ValueError(
                'url scheme must be http or https; got {!r}'.format(url)
            )
        if not t.netloc:
            raise ValueError('bad url: {!r}'.format(url))
        self.basepath = (t.path if t.path.endswith('/') else t.path + '/')
        self.t = t
        self.url = self.full_url(self.basepath)
        self.threadlocal = threading.local()
        if t.scheme == 'https':
            sslconfig = self.env.get('ssl', {})
            sslctx = build_ssl_context(sslconfig)
            self.client = create_sslclient(sslctx, self.t)
        else:
            self.client = create_client(self.t)

    def full_url(self, path):
        return ''.join([self.t.scheme, '://', self.t.netloc, path])

    def get_threadlocal_connection(self):
        conn = getattr(self.threadlocal, 'connection', None)
        if conn is None or conn.closed:
            conn = self.client.connect()
            self.threadlocal.connection = conn
        return conn

    def get_auth_headers(self, method, path, query):
        if 'basic' in self.env:
            return _basic_auth_header(self.env['basic'])
        return {}


class CouchBase(object):
    """
    Base class for `Server` and `Database`.

    This is the transport every other part of `cushion` goes through.  To
    keep it simple there are a few assumptions:

        * Request bodies are empty or JSON, except when you PUT an attachment

        * Response bodies are JSON, except when you GET an attachment

    Every method takes an optional *expect* status.  When given, any other
    success status is raised as `UnexpectedStatus`.  Error statuses are always
    raised as the matching `HTTPError` subclass.

    Query options are sent as given when they are ``str``, and JSON encoded
    otherwise.  Unlike most options, the "key", "startkey" and "endkey" values
    are JSON on the wire, so pass them pre-encoded:

    >>> db = Database('people')
    >>> db.get('_all_docs', key='"bob"')  #doctest: +SKIP
    {'offset': 1, 'rows': [...], 'total_rows': 3}

    """

    def __init__(self, env=None, ctx=None):
        self.ctx = (Context(env) if ctx is None else ctx)
        self.env = self.ctx.env
        self.basepath = self.ctx.basepath
        self.url = self.ctx.url

    def raw_request(self, method, path, body, headers):
        conn = self.ctx.get_threadlocal_connection()
        # We automatically retry once in case connection was closed by server:
        try:
            return conn.request(method, path, headers, body)
        except ConnectionError as e:
            log.info('retrying %s %s after %r', method, path, e)
        conn = self.ctx.get_threadlocal_connection()
        return conn.request(method, path, headers, body)

    def request(self, method, parts, options, body=None, headers=None,
                expect=None):
        h = {'user-agent': USER_AGENT}
        if headers:
            h.update(headers)
        path = (self.basepath + '/'.join(parts) if parts else self.basepath)
        query = (tuple(_queryiter(options)) if options else tuple())
        h.update(self.ctx.get_auth_headers(method, path, query))
        if query:
            path = '?'.join([path, urlencode(query)])
        response = self.raw_request(method, path, body, h)
        if response.status >= 500:
            raise ServerError(response, method, path)
        if response.status >= 400:
            E = errors.get(response.status, ClientError)
            raise E(response, method, path)
        if expect is not None and response.status != expect:
            raise UnexpectedStatus(response, method, path)
        return response

    def recv_json(self, method, parts, options, body=None, headers=None,
                  expect=None):
        if headers is None:
            headers = {}
        headers['accept'] = 'application/json'
        response = self.request(method, parts, options, body, headers, expect)
        data = (b'' if response.body is None else response.body.read())
        try:
            return json.loads(data.decode())
        except ValueError as e:
            raise DecodeError(
                'bad JSON from {} {}: {}'.format(method, '/'.join(parts), e)
            ) from e

    def post(self, obj, *parts, expect=None, **options):
        """
        POST *obj*.

        For example, to create the doc "bar" in the database "foo":

        >>> cb = CouchBase()
        >>> cb.post({'_id': 'bar'}, 'foo')  #doctest: +SKIP
        {'rev': '1-967a00dff5e02add41819138abb3284d', 'ok': True, 'id': 'bar'}

        """
        return self.recv_json('POST', parts, options, _json_body(obj),
            {'content-type': 'application/json'}, expect
        )

    def put(self, obj, *parts, expect=None, **options):
        """
        PUT *obj*.

        For example, to create the doc "bar" in the database "foo":

        >>> cb = CouchBase()
        >>> cb.put({'micro': 'fiber'}, 'foo', 'bar')  #doctest: +SKIP
        {'rev': '1-fae0708c46b4a6c9c497c3a687170ad6', 'ok': True, 'id': 'bar'}

        """
        return self.recv_json('PUT', parts, options, _json_body(obj),
            {'content-type': 'application/json'}, expect
        )

    def get(self, *parts, expect=None, **options):
        """
        Make a GET request.

        For example, to request the doc "bar" from the database "foo",
        including any attachments:

        >>> cb = CouchBase()
        >>> cb.get('foo', 'bar', attachments=True)  #doctest: +SKIP
        {'_rev': '1-967a00dff5e02add41819138abb3284d', '_id': 'bar'}
        """
        return self.recv_json('GET', parts, options, None, None, expect)

    def delete(self, *parts, expect=None, **options):
        """
        Make a DELETE request.

        For example, to delete the doc "bar" in the database "foo":

        >>> cb = CouchBase()
        >>> cb.delete('foo', 'bar', rev='1-fae0708c46b4a6c9c497c3a687170ad6')  #doctest: +SKIP
        {'rev': '2-18995243f0ebd1066fcb191a28d1222a', 'ok': True, 'id': 'bar'}

        """
        return self.recv_json('DELETE', parts, options, None, None, expect)

    def put_att(self, mime, data, *parts, expect=None, **options):
        """
        PUT an attachment.

        For example, to upload the attachment "baz" for the doc "bar" in the
        database "foo":

        >>> cb = CouchBase()
        >>> cb.put_att('image/png', b'da pic', 'foo', 'bar', 'baz', rev='1-f759cc40458cdd5bd8ae379174bc53d9')  #doctest: +SKIP
        {'rev': '2-a39e0d38ad18e00a40292c4bd0e54bfe', 'ok': True, 'id': 'bar'}

        :param mime: The Content-Type, eg ``'image/jpeg'``
        :param data: a ``bytes`` instance
        :param parts: path components to construct URL relative to base path
        :param options: optional keyword arguments to include in query
        """
        return self.recv_json('PUT', parts, options, data,
            {'content-type': mime}, expect
        )

    def get_att(self, *parts, **options):
        """
        GET an attachment.

        Returns the raw attachment bytes.  For example, to download the
        attachment "baz" for the doc "bar" in the database "foo":

        >>> cb = CouchBase()
        >>> cb.get_att('foo', 'bar', 'baz')  #doctest: +SKIP
        b'da pic'

        :param parts: path components to construct URL relative to base path
        :param options: optional keyword arguments to include in query
        """
        response = self.request('GET', parts, options, expect=200)
        return (b'' if response.body is None else response.body.read())


class Server(CouchBase):
    """
    All the `CouchBase` methods plus a way to get at databases.

    For example:

    >>> s = Server('http://localhost:5984/')
    >>> s
    Server('http://localhost:5984/')
    >>> s.url
    'http://localhost:5984/'
    >>> s.basepath
    '/'

    """

    def __repr__(self):
        return '{}({!r})'.format(self.__class__.__name__, self.url)

    def database(self, name):
        """
        Create a `Database` with the same `Context` as this `Server`.
        """
        return Database(name, ctx=self.ctx)


class Database(CouchBase):
    """
    All the `CouchBase` methods plus some database-specific niceties.

    For example:

    >>> db = Database('people', 'http://localhost:5984/')
    >>> db
    Database('people', 'http://localhost:5984/')
    >>> db.name
    'people'
    >>> db.url
    'http://localhost:5984/'
    >>> db.basepath
    '/people/'


    Niceties:

        * `Database.server()` - return a `Server` pointing at same URL
        * `Database.documents()` - revision-checked document operations
        * `Database.view(design, view)` - a chainable view query
        * `Database.temporary_view(map_src)` - a chainable ad hoc view query
        * `Database.all_docs()` - a chainable ``_all_docs`` query
    """

    def __init__(self, name, env=None, ctx=None):
        super().__init__(env, ctx)
        self.name = name
        self.basepath += (name + '/')

    def __repr__(self):
        return '{}({!r}, {!r})'.format(
            self.__class__.__name__, self.name, self.url
        )

    def server(self):
        """
        Create a `Server` with the same `Context` as this `Database`.
        """
        return Server(ctx=self.ctx)

    def documents(self, codec=None):
        from .documents import Documents
        return Documents(self, codec)

    def view(self, design, view, key_type=None, value_type=None, codec=None):
        """
        Return a `cushion.views.ViewQueryBuilder` for *design*/*view*.

        No request is made until one of the builder's query methods is
        called.
        """
        from .views import ViewQueryBuilder
        return ViewQueryBuilder(self, design, view,
            key_type=key_type, value_type=value_type, codec=codec
        )

    def temporary_view(self, map_src, reduce_src=None, key_type=None,
                       value_type=None, codec=None):
        """
        Return a `cushion.views.TemporaryViewQueryBuilder`.

        *map_src* and *reduce_src* are the view's function sources; neither is
        saved in a design doc.
        """
        from .views import TemporaryViewQueryBuilder
        return TemporaryViewQueryBuilder(self, map_src, reduce_src,
            key_type=key_type, value_type=value_type, codec=codec
        )

    def all_docs(self, codec=None):
        from .views import AllDocsQueryBuilder
        return AllDocsQueryBuilder(self, codec=codec)
