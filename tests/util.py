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

import os
import gzip
import asyncio
from yaml import safe_load
import pytest
import pytest_asyncio

from etcd_nodecache.node import NodeStat, NoNodeError, RemoteUnavailable
from etcd_nodecache.util import split_path

__ALL__ = ('cfg','cfgpath','remote','client','FakeClient')

cfgpath = None

class FakeClient(object):
    """\
        An in-memory coordination service.

        Watches fire synchronously from within set()/delete()/fire(),
        so after a change a test only needs to await the cache's wait().
        """
    def __init__(self):
        self.nodes = {}
        self.dirs = set()
        self.watches = {}
        self.listeners = []
        self.index = 0
        self.fail = 0 # fail that many requests
        self.gate = None # if set, watched get_data() waits for it
        self.waiting = None
        self.reads = 0

    # NodeCache interface

    async def ensure_path(self, path, excluding_last=False):
        keys = split_path(path)
        if excluding_last:
            keys = keys[:-1]
        key = ''
        for k in keys:
            key += '/'+k
            self.dirs.add(key)

    async def exists(self, path, watcher=None):
        self._check()
        self._watch(path, watcher)
        node = self.nodes.get(path)
        return None if node is None else node[1]

    async def get_data(self, path, watcher=None, decompress=False):
        self.reads += 1
        # an in-flight request answers with what it saw when it was sent
        node = self.nodes.get(path)
        if watcher is not None and self.gate is not None:
            self.waiting.set()
            await self.gate.wait()
        self._check()
        if node is None:
            raise NoNodeError(path)
        self._watch(path, watcher)
        data,stat = node
        if decompress:
            data = gzip.decompress(data)
        return data,stat

    def add_connection_listener(self, listener):
        self.listeners.append(listener)

    def remove_connection_listener(self, listener):
        if listener in self.listeners:
            self.listeners.remove(listener)

    # test helpers

    def hold(self):
        """Delay watched get_data() requests until release()"""
        self.gate = asyncio.Event()
        self.waiting = asyncio.Event()

    def release(self):
        g,self.gate = self.gate,None
        g.set()

    def _check(self):
        if self.fail:
            self.fail -= 1
            raise RemoteUnavailable("fake")

    def _watch(self, path, watcher):
        if watcher is not None:
            self.watches.setdefault(path,set()).add(watcher)

    def set(self, path, data):
        self.index += 1
        old = self.nodes.get(path)
        created = self.index if old is None else old[1].created
        self.nodes[path] = (data, NodeStat(created, self.index))
        self.fire(path)
        return self.nodes[path]

    def touch(self, path):
        """New version, same content"""
        return self.set(path, self.nodes[path][0])

    def delete(self, path):
        self.index += 1
        del self.nodes[path]
        self.fire(path)

    def fire(self, path):
        for w in self.watches.pop(path,()):
            w(path)

    def connection(self, state):
        for listener in list(self.listeners):
            listener(state)

@pytest.fixture
def remote():
    """An empty in-memory coordination service"""
    return FakeClient()

@pytest_asyncio.fixture
async def client():
    """An interface to a clean etcd subtree"""
    if cfg is None:
        pytest.skip("no etcd test configuration")
    import aio_etcd as etcd
    kw = cfg['config']['etcd'].copy()
    r = kw.pop('root')

    from etcd_nodecache.etcd import EtcClient
    c = EtcClient(root=r, **kw)
    try:
        await c.client.delete(c.root, recursive=True)
    except etcd.EtcdKeyNotFound:
        pass
    except etcd.EtcdConnectionFailed:
        pytest.skip("etcd is not running")
    await c.start()
    yield c
    await c.stop()

# load a config file
def load_cfg(cfg):
    global cfgpath
    if os.path.exists(cfg):
        pass
    elif os.path.exists(os.path.join("tests",cfg)):
        cfg = os.path.join("tests",cfg)
    elif os.path.exists(os.path.join(os.pardir,cfg)):
        cfg = os.path.join(os.pardir,cfg)
    else:
        return None

    cfgpath = cfg
    with open(cfg) as f:
        return safe_load(f)

cfg = load_cfg(os.environ.get('ETCD_NODECACHE_TEST_CFG',"test.cfg"))
