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
etcNodeCache keeps a local copy of a single etcd node up to date.
"""

__VERSION__ = (0,1,0)

async def client(cfg=None):
	"""Return a started EtcClient, configured from @cfg's config.etcd"""
	from .util import load_cfg
	cfg = load_cfg(cfg)

	from .etcd import EtcClient
	c = EtcClient(**cfg['config']['etcd'])
	await c.start()
	return c

async def node_cache(path, cfg=None, conn=None, **kw):
	"""\
		Return a started NodeCache for @path.

		Defaults for the cache's arguments (`compressed`, `build_initial`)
		are read from @cfg's config.nodecache and may be overridden by
		keyword. If @conn is not given, one is created from @cfg.
		"""
	from .util import load_cfg
	cfg = load_cfg(cfg)
	args = dict(cfg['config'].get('nodecache') or {})
	args.update(kw)

	if conn is None:
		conn = await client(cfg)
	c = NodeCache(conn, path, data_is_compressed=args.get('compressed',False))
	await c.start(build_initial=args.get('build_initial',False))
	return c

from .node import *
from .etcd import *
