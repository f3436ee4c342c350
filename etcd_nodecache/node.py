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

runlogger = logging.getLogger(__name__+'.run')
debug_id = 0

"""\
This declares the node cache: a local copy of one etcd node which follows
the remote value via watches.

The cache cannot stay transactionally in sync. Users must be prepared for
false positives and false negatives, and should always pass the version
stamp when updating the node, to avoid overwriting somebody else's change.
"""

import asyncio
import inspect
import weakref
from collections import namedtuple
from enum import Enum
from functools import partial

from .util import validate_path

__all__ = ('NodeCache','NodeData','NodeStat','CacheState','ConnectionState',
	'MonitorCallback',
	'IllegalLifecycle','NotStarted','RemoteUnavailable','NoNodeError',
	)

class IllegalLifecycle(RuntimeError):
	"""The cache is not in a state which allows this operation."""
	pass

class NotStarted(IllegalLifecycle):
	"""Raised when calling rebuild() on a cache which is not running."""
	pass

class RemoteUnavailable(RuntimeError):
	"""The coordination service could not be reached."""
	pass

class NoNodeError(KeyError):
	"""The node does not exist."""
	pass

class CacheState(Enum):
	LATENT = "latent"
	STARTED = "started"
	CLOSED = "closed"

class ConnectionState(Enum):
	CONNECTED = "connected"
	RECONNECTED = "reconnected"
	SUSPENDED = "suspended"
	LOST = "lost"
	READ_ONLY = "read_only"

	@property
	def connected(self):
		return self in (ConnectionState.CONNECTED, ConnectionState.RECONNECTED)

# etcd's idea of a node version: creation and modification index
NodeStat = namedtuple('NodeStat', ('created','modified'))

class NodeData(object):
	"""\
		An immutable snapshot of the remote node.

		@path: the node's path
		@stat: version metadata, opaque to the cache
		@data: the content, as bytes

		A snapshot without stat and data says that the node does not exist.
		"""
	__slots__ = ('path','stat','data')

	def __init__(self, path, stat=None, data=None):
		if (stat is None) != (data is None):
			raise ValueError("stat and data must be set together", path)
		if data is not None:
			data = bytes(data)
		object.__setattr__(self,'path',path)
		object.__setattr__(self,'stat',stat)
		object.__setattr__(self,'data',data)

	def __setattr__(self, k,v):
		raise AttributeError("NodeData is immutable")
	def __delattr__(self, k):
		raise AttributeError("NodeData is immutable")

	@property
	def exists(self):
		return self.data is not None

	def __eq__(self, other):
		if not isinstance(other, NodeData):
			return NotImplemented
		if not self.exists or not other.exists:
			return self.exists == other.exists
		return self.path == other.path and self.stat == other.stat and self.data == other.data

	def __hash__(self):
		if not self.exists:
			return hash(None)
		return hash((self.path,self.stat,self.data))

	def __bool__(self):
		return self.exists

	def __repr__(self): # pragma: no cover
		if not self.exists:
			return "<%s:%s absent>" % (self.__class__.__name__,self.path)
		return "<%s:%s %s %r>" % (self.__class__.__name__,self.path,self.stat,self.data)

# Cancellable callback token

class MonitorCallback(object):
	def __init__(self, base,i,callback):
		self.base = weakref.ref(base)
		self.i = i
		self.callback = callback
	def cancel(self):
		base = self.base()
		if base is None:
			return # pragma: no cover
		base.remove_monitor(self.i)
	def __call__(self):
		return self.callback()

##############################################################################

class NodeCache(object):
	"""\
		Keeps the data of one etcd node locally cached.

		@client: the coordination client, usually an EtcClient.
		@path: the full path of the node to watch.
		@data_is_compressed: if True, the node's content is compressed.

		The cache watches the node, reacts to create/update/delete events,
		re-reads the data, and calls its monitors whenever the local copy
		changes. All remote work is posted to a queue which a single task
		processes; watches and completions only ever enqueue.
		"""
	_job = None
	_q = None
	_mon_idx = 1

	def __init__(self, client, path, data_is_compressed=False):
		global debug_id; debug_id += 1
		self._debug_id = debug_id
		self.client = client
		self.path = validate_path(path)
		self.data_is_compressed = data_is_compressed
		self._data = NodeData(self.path)
		self._state = CacheState.LATENT
		self._connected = True
		self._monitors = {}
		self._pending = set()

	def __repr__(self): # pragma: no cover
		return "<{}:{}:{} {}>".format(self._debug_id,self.__class__.__name__,self.path,self._state.value)

	@property
	def state(self):
		return self._state

	@property
	def connected(self):
		"""Flag that tells whether the cache thinks the client is connected"""
		return self._connected

	@property
	def current_data(self):
		"""\
			The current data. There are no guarantees of accuracy; this is
			merely the most recent view of the node. If the node does not
			exist, this is an absent (false) NodeData.
			"""
		return self._data
	def get_current_data(self):
		return self._data

	def _set_state(self, old, new):
		if self._state is not old:
			return False
		self._state = new
		return True

	async def __aenter__(self):
		await self.start()
		return self

	async def __aexit__(self, *tb):
		await self.close()

	async def start(self, build_initial=False):
		"""\
			Start the cache. This is not done automatically.

			If @build_initial is set, the node is read before this method
			returns, so that the initial view is already populated.
			"""
		if not self._set_state(CacheState.LATENT, CacheState.STARTED):
			raise IllegalLifecycle("Cannot be started more than once", self.path)
		runlogger.debug("%d:start %s",self._debug_id, self.path)
		self._q = asyncio.Queue()
		self._job = asyncio.ensure_future(self._run())

		await self.client.ensure_path(self.path, excluding_last=True)
		self.client.add_connection_listener(self._connection_changed)
		if build_initial:
			await self._rebuild()
		self.reset()

	async def close(self):
		"""\
			Stop following the node. In-flight requests are not cancelled,
			but their results are discarded.
			"""
		if self._set_state(CacheState.STARTED, CacheState.CLOSED):
			logger.debug("%d:Closing %s",self._debug_id, self.path)
			self._monitors.clear()
			self._q.put_nowait(None)
		self.client.remove_connection_listener(self._connection_changed)

		j,self._job = self._job,None
		if j is not None:
			await j

	async def rebuild(self):
		"""\
			Completely rebuild the cached data by reading the node,
			*without* calling any monitors. Then restart the watch.
			"""
		if self._state is not CacheState.STARTED:
			raise NotStarted("Not started", self.path)
		await self._rebuild()
		self.reset()

	async def wait(self):
		"""Delay until pending remote requests have been processed"""
		while True:
			if self._pending:
				await asyncio.wait(list(self._pending))
			if self._q is not None and self._job is not None:
				await self._q.join()
			if not self._pending:
				return

	def add_monitor(self, callback):
		"""\
			Add a monitor function that is called, without arguments,
			whenever the cached data change. Call .current_data to get
			the new value.

			Returns a token with a .cancel() method. Adding the same
			callback again returns its existing token.
			"""
		if self._state is CacheState.CLOSED:
			raise IllegalLifecycle("Closed", self.path)
		for mon in self._monitors.values():
			if mon.callback == callback:
				return mon
		i,self._mon_idx = self._mon_idx,self._mon_idx+1
		self._monitors[i] = mon = MonitorCallback(self,i,callback)
		logger.debug("%d:add_mon %s %s",self._debug_id,i,callback)
		return mon

	def remove_monitor(self, token):
		"""Remove a monitor, by token or by callback"""
		if isinstance(token,MonitorCallback):
			token = token.i
		elif not isinstance(token,int):
			for i,mon in list(self._monitors.items()):
				if mon.callback == token:
					token = i
					break
			else:
				return
		self._monitors.pop(token,None)

	def reset(self):
		"""\
			Re-arm the watch and re-read the node in the background.
			Does nothing unless the cache is running and connected.
			"""
		if self._state is CacheState.STARTED and self._connected:
			self._post(self._check_exists)

	# Everything below runs in, or posts to, the queue task.

	def _post(self, p, *a):
		runlogger.debug("%d:Enq %s %s",self._debug_id, p.__name__,a)
		self._q.put_nowait((p,a))

	def _background(self, p, proc, *a, **k):
		"""Run a remote request; its future is posted to @p when done"""
		f = asyncio.ensure_future(proc(*a, **k))
		self._pending.add(f)
		f.add_done_callback(partial(self._done, p))

	def _done(self, p, f):
		self._pending.discard(f)
		if self._state is not CacheState.STARTED:
			runlogger.debug("%d:late %s, dropped",self._debug_id, p.__name__)
			if not f.cancelled():
				f.exception()
			return
		self._post(p, f)

	async def _run(self):
		while True:
			runlogger.debug("%d:wait",self._debug_id)
			r = await self._q.get()
			try:
				if r is None:
					runlogger.debug("%d:end",self._debug_id)
					return
				p,a = r
				try:
					res = p(*a)
					if inspect.isawaitable(res):
						await res
				except Exception:
					runlogger.exception("%d:Queue error",self._debug_id)
			finally:
				self._q.task_done()

	def _watcher(self, event=None):
		runlogger.debug("%d:watch %s %s",self._debug_id, self.path, event)
		self.reset()

	def _check_exists(self):
		if self._state is not CacheState.STARTED or not self._connected:
			return
		self._background(self._exists_done, self.client.exists, self.path, watcher=self._watcher)

	def _exists_done(self, f):
		if self._state is not CacheState.STARTED or f.cancelled():
			return
		exc = f.exception()
		if exc is not None:
			logger.warning("%d:exists %s failed: %r",self._debug_id, self.path, exc)
			return
		if f.result() is None:
			self._set_new_data(NodeData(self.path))
		else:
			self._background(self._data_done, self.client.get_data, self.path,
				watcher=self._watcher, decompress=self.data_is_compressed)

	def _data_done(self, f):
		if self._state is not CacheState.STARTED or f.cancelled():
			return
		exc = f.exception()
		if isinstance(exc,NoNodeError):
			# deleted after the existence check. The exists watch will fire.
			runlogger.debug("%d:vanished %s",self._debug_id, self.path)
			return
		if exc is not None:
			logger.warning("%d:get_data %s failed: %r",self._debug_id, self.path, exc)
			return
		data,stat = f.result()
		self._set_new_data(NodeData(self.path, stat, data))

	async def _read(self):
		try:
			data,stat = await self.client.get_data(self.path, decompress=self.data_is_compressed)
		except NoNodeError:
			return NodeData(self.path)
		return NodeData(self.path, stat, data)

	async def _rebuild(self):
		data = await self._read()
		if self._state is CacheState.STARTED:
			self._data = data

	async def _resync(self):
		try:
			data = await self._read()
		except Exception:
			logger.exception("%d:Trying to reset after reconnection",self._debug_id)
		else:
			if self._state is CacheState.STARTED:
				self._set_new_data(data)
		self.reset()

	def _connection_changed(self, state):
		logger.debug("%d:connection %s",self._debug_id, state)
		if state.connected:
			if not self._connected:
				self._connected = True
				if self._state is CacheState.STARTED:
					self._post(self._resync)
		else:
			self._connected = False

	def _set_new_data(self, data):
		previous,self._data = self._data,data
		if previous != data:
			self._call_monitors()

	def _call_monitors(self):
		for mon in list(self._monitors.values()):
			try:
				res = mon()
				if inspect.isawaitable(res):
					res = asyncio.ensure_future(res)
					self._pending.add(res)
					res.add_done_callback(self._monitor_done)
			except Exception:
				logger.exception("%d:Calling monitor %s",self._debug_id, mon.callback)

	def _monitor_done(self, f):
		self._pending.discard(f)
		if f.cancelled():
			return
		exc = f.exception()
		if exc is not None:
			logger.error("%d:Calling monitor",self._debug_id, exc_info=exc)
