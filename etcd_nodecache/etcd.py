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

"""\
This is the etcd interface.
"""

import aio_etcd as etcd
from aio_etcd.client import Client
import asyncio
import base64
import gzip
import inspect

from .node import ConnectionState, NodeStat, NoNodeError, RemoteUnavailable
from .util import split_path

__all__ = ("EtcClient",)

class EtcClient(object):
	"""\
		A connection to etcd, as seen by a NodeCache.

		@root: prefix for all paths.
		@retries: how often to repeat a request when etcd is unreachable.
		@reconnect_delay: seconds between reconnection probes.
		Everything else is passed to aio_etcd's Client.

		Connection state changes are reported to listeners registered
		with add_connection_listener().
		"""
	last_mod = None
	_probe = None

	def __init__(self, root="", retries=5, reconnect_delay=1.0, **args):
		assert (root == '' or root[0] == '/')
		self.root = root
		self.retries = retries
		self.reconnect_delay = reconnect_delay
		self.args = args
		self.client = Client(**args)
		self.state = None
		self._listeners = []
		self._watches = {}
		self._ensured = set()

	async def start(self):
		if self.last_mod is not None: # pragma: no cover
			return
		try:
			self.last_mod = (await self._retry(self.client.read,self.root)).etcd_index
		except etcd.EtcdKeyNotFound:
			self.last_mod = (await self._retry(self.client.write,self.root, value=None, dir=True)).etcd_index

	def close(self):
		p,self._probe = self._probe,None
		if p is not None:
			p.cancel()
		w,self._watches = self._watches,{}
		for t in w.values():
			t.cancel()
		try: c = self.client
		except AttributeError: pass # pragma: no cover
		else:
			del self.client
			# newer aiohttp sessions close asynchronously
			return c.close()

	async def stop(self):
		res = self.close()
		if inspect.isawaitable(res):
			await res

	def _extkey(self, key):
		key = str(key)
		if key == '/':
			key = ''
		elif key != '':
			assert key[0] == '/'
			assert key[-1] != '/'
			assert '//' not in key
		return self.root+key

	# connection state

	def add_connection_listener(self, listener):
		if listener not in self._listeners:
			self._listeners.append(listener)

	def remove_connection_listener(self, listener):
		try:
			self._listeners.remove(listener)
		except ValueError:
			pass

	def _set_state(self, state):
		if state is self.state:
			return
		logger.info("etcd %s: %s", self.args.get('host','localhost'), state.value)
		self.state = state
		for listener in list(self._listeners):
			try:
				listener(state)
			except Exception:
				logger.exception("Connection listener %s", listener)
		if not state.connected and self._probe is None:
			self._probe = asyncio.ensure_future(self._reconnect())

	def _alive(self):
		if self.state is None:
			self._set_state(ConnectionState.CONNECTED)
		elif not self.state.connected:
			self._set_state(ConnectionState.RECONNECTED)

	async def _retry(self, p,*a,**k):
		n=0
		while True:
			try:
				res = await p(*a,**k)
			except etcd.EtcdConnectionFailed as exc:
				if n >= self.retries:
					self._set_state(ConnectionState.LOST)
					raise RemoteUnavailable(self.args.get('host','localhost')) from exc
				if self.state is None or self.state.connected:
					self._set_state(ConnectionState.SUSPENDED)
				n += 1
			except etcd.EtcdKeyNotFound:
				self._alive()
				raise
			else:
				self._alive()
				return res

	async def _reconnect(self):
		"""Task which probes etcd until it answers again"""
		try:
			while not self.state.connected:
				await asyncio.sleep(self.reconnect_delay)
				try:
					await self.client.read(self.root or '/')
				except etcd.EtcdKeyNotFound:
					self._alive()
				except etcd.EtcdConnectionFailed:
					logger.debug("etcd still unreachable")
				except etcd.EtcdException:
					logger.exception("Probing etcd")
				else:
					self._alive()
		finally:
			self._probe = None

	# watches

	def _arm(self, key, watcher, index):
		"""Start a one-shot watch, unless @watcher already waits on @key"""
		if watcher is None:
			return
		k = (key,watcher)
		if k in self._watches:
			return
		self._watches[k] = asyncio.ensure_future(self._watch(key,watcher,index))

	async def _watch(self, key, watcher, index):
		try:
			while True:
				try:
					res = await self.client.watch(key, index=index)
				except etcd.EtcdWatchTimedOut:
					continue
				except etcd.EtcdEventIndexCleared:
					logger.debug("Watch on %s: index %s cleared", key,index)
					res = None
				except etcd.EtcdConnectionFailed:
					# the cache re-reads everything when we're back
					logger.debug("Watch on %s: connection failed", key)
					self._set_state(ConnectionState.SUSPENDED)
					return
				except etcd.EtcdException as exc:
					logger.warning("Watch on %s failed: %r", key,exc)
					res = None
				break
		finally:
			if self._watches.get((key,watcher)) is asyncio.current_task():
				del self._watches[(key,watcher)]
		try:
			watcher(res)
		except Exception:
			logger.exception("Watcher for %s", key)

	@staticmethod
	def _index(exc):
		payload = getattr(exc,'payload',None) or {}
		idx = payload.get('index',None)
		if idx is None:
			return None
		return int(idx)+1

	# the NodeCache interface

	async def ensure_path(self, path, excluding_last=False):
		"""\
			Create all directories leading to @path.
			If @excluding_last is set, the last element is left alone.
			"""
		keys = split_path(path)
		if excluding_last:
			keys = keys[:-1]
		key = ''
		for k in keys:
			key += '/'+k
			if key in self._ensured:
				continue
			xkey = self._extkey(key)
			# etcd can't do "create-directory-if-it-does-not-exist"
			try:
				await self._retry(self.client.read,xkey)
			except etcd.EtcdKeyNotFound:
				try:
					await self._retry(self.client.write,xkey, prevExist=False, dir=True, value=None)
				except etcd.EtcdAlreadyExist: # pragma: no cover
					pass
			self._ensured.add(key)

	async def exists(self, path, watcher=None):
		"""\
			Returns the node's NodeStat, or None if it doesn't exist.
			@watcher is called once when the node is created, changed or deleted.
			"""
		key = self._extkey(path)
		try:
			res = await self._retry(self.client.read,key)
		except etcd.EtcdKeyNotFound as exc:
			self._arm(key, watcher, self._index(exc))
			return None
		self._arm(key, watcher, res.etcd_index+1)
		return NodeStat(res.createdIndex, res.modifiedIndex)

	async def get_data(self, path, watcher=None, decompress=False):
		"""\
			Returns a (data,NodeStat) tuple. Raises NoNodeError if the node
			doesn't exist.
			@watcher is called once when the node is changed or deleted.
			"""
		key = self._extkey(path)
		try:
			res = await self._retry(self.client.read,key)
		except etcd.EtcdKeyNotFound:
			raise NoNodeError(path) from None
		self._arm(key, watcher, res.etcd_index+1)
		return self._decode(res.value, decompress), NodeStat(res.createdIndex, res.modifiedIndex)

	@staticmethod
	def _decode(value, decompress):
		if value is None:
			return b''
		if decompress:
			return gzip.decompress(base64.b64decode(value))
		return value.encode('utf-8')

	@staticmethod
	def _encode(value, compress):
		if isinstance(value,str):
			value = value.encode('utf-8')
		if compress:
			return base64.b64encode(gzip.compress(value)).decode('ascii')
		return value.decode('utf-8')

	# writing, for whoever produces the node's data

	async def set(self, path, value, prev=None, index=None, create=None, compress=False):
		"""\
			Either create or update a node.

			@path: the node's path.

			@value: the new content, bytes or str.

			@prev: the previous value; only when @create!=True

			@index: the previous modification stamp; only when @create!=True

			@create: True: the node must not exist. False: it must.

			@compress: store the content gzip-compressed.
			"""
		key = self._extkey(path)
		kw = {}
		if create is True:
			kw['prevExist'] = False
			assert prev is None
			assert index is None
		else:
			if create is False:
				kw['prevExist'] = True
			if index is not None:
				kw['prevIndex'] = index
			if prev is not None:
				kw['prevValue'] = self._encode(prev, compress)
		value = self._encode(value, compress)
		logger.debug("Write %s to %s prev=%s index=%s",value,key, prev,index)

		res = await self._retry(self.client.write,key, value=value, **kw)
		self.last_mod = res.modifiedIndex
		return res

	async def delete(self, path, prev=None, index=None):
		"""\
			Delete a node.

			@index: current mod stamp

			@prev: current value
			"""
		kw = {}
		if prev is not None:
			kw['prevValue'] = self._encode(prev, False)
		if index is not None:
			kw['prevIndex'] = index
		key = self._extkey(path)
		res = await self._retry(self.client.delete,key,**kw)
		self.last_mod = res.modifiedIndex
		return res
